from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from trackanalysis.direction.labels import DirectionLabels
from trackanalysis.segmentation.segment import Segment, index_to_segment
from trackanalysis.utils.types import Trajectory


def _segmented_step(seg: Optional[Segment], p0: np.ndarray, p1: np.ndarray) -> float:
    if seg is not None and seg.is_line:
        a = seg.snap(p0)
        b = seg.snap(p1)
        return float(math.hypot(float(b[0] - a[0]), float(b[1] - a[1])))
    return float(math.hypot(float(p1[0] - p0[0]), float(p1[1] - p0[1])))


def _bearing_step(bearing: np.ndarray, p0: np.ndarray, p1: np.ndarray) -> float:
    d = p1 - p0
    norm = math.hypot(float(bearing[0]), float(bearing[1]))
    if not norm > 0.0:
        return float(math.hypot(float(d[0]), float(d[1])))
    return abs(float(d[0] * bearing[0] + d[1] * bearing[1])) / norm


def cumulative_path(
    traj: Trajectory,
    labels: DirectionLabels,
    segments: Optional[Sequence[Segment]] = None,
) -> np.ndarray:
    """Direction-signed distance travelled, restarting at zero on each valid run.

    Steps inside Straight or Arc segments are measured between the positions
    snapped onto the fitted geometry; still frames hold the running value.
    Without segments, each step is projected onto the bearing.
    """
    n = traj.n_frames
    out = np.full(n, np.nan, dtype=np.float64)
    pos = traj.centroid
    present = traj.present
    for i0, i1 in labels.valid_runs():
        total = 0.0
        prev = i0 if present[i0] else -1
        out[i0] = total
        for i in range(i0 + 1, i1 + 1):
            if not present[i]:
                out[i] = total
                continue
            if prev >= 0 and not labels.is_still(i):
                if segments is None:
                    step = _bearing_step(traj.bearing[i], pos[prev], pos[i])
                else:
                    j = index_to_segment(segments, i)
                    step = _segmented_step(segments[j] if j >= 0 else None, pos[prev], pos[i])
                total += step if labels.is_forward(i) else -step
            out[i] = total
            prev = i
    return out
