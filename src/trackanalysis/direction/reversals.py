from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List

import numpy as np

logger = logging.getLogger(__name__)

REVERSAL_BODY_FRACTION = 0.25


@dataclass(frozen=True)
class ReversalEvent:
    start: int
    end: int
    t0: float
    t1: float
    distance: float

    @property
    def duration(self) -> float:
        return self.t1 - self.t0


def find_reversals(path: np.ndarray, times: np.ndarray, threshold: float) -> List[ReversalEvent]:
    """Backward excursions of a signed cumulative path.

    A reversal starts where the path last peaked once it has fallen ``threshold``
    below that peak, and ends at the lowest point once the path climbs
    ``threshold`` back up (or the valid run ends). NaN frames end the current run.
    """
    events: List[ReversalEvent] = []
    if threshold <= 0.0 or not math.isfinite(threshold):
        return events
    peak = -math.inf
    peak_i = -1
    trough = math.inf
    trough_i = -1
    reversing = False

    def close() -> None:
        if trough_i > peak_i and times[trough_i] > times[peak_i]:
            events.append(
                ReversalEvent(
                    start=peak_i,
                    end=trough_i,
                    t0=float(times[peak_i]),
                    t1=float(times[trough_i]),
                    distance=float(peak - trough),
                )
            )

    for i, v in enumerate(np.asarray(path, dtype=np.float64)):
        if math.isnan(v):
            if reversing:
                close()
            reversing = False
            peak = -math.inf
            continue
        if not reversing:
            if v >= peak:
                peak = float(v)
                peak_i = i
            elif v < peak - threshold:
                reversing = True
                trough = float(v)
                trough_i = i
        else:
            if v < trough:
                trough = float(v)
                trough_i = i
            elif v > trough + threshold:
                close()
                reversing = False
                peak = float(v)
                peak_i = i
    if reversing:
        close()
    logger.debug("Found %d reversal(s)", len(events))
    return events
