from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

FORWARD = 1.0
BACKWARD = -1.0
STILL = 0.0
INVALID = math.nan


@dataclass
class DirectionLabels:
    """Per-frame direction: +1 forward, -1 backward, 0 still, NaN invalid."""

    values: np.ndarray

    @staticmethod
    def invalid(n: int) -> "DirectionLabels":
        return DirectionLabels(np.full(n, INVALID, dtype=np.float64))

    def __len__(self) -> int:
        return len(self.values)

    def is_valid(self, i: int) -> bool:
        return not math.isnan(float(self.values[i]))

    def is_forward(self, i: int) -> bool:
        return float(self.values[i]) == FORWARD

    def is_backward(self, i: int) -> bool:
        return float(self.values[i]) == BACKWARD

    def is_still(self, i: int) -> bool:
        return float(self.values[i]) == STILL

    def valid_runs(self) -> List[Tuple[int, int]]:
        """Inclusive ``(i0, i1)`` ranges of consecutive valid frames."""
        runs: List[Tuple[int, int]] = []
        valid = ~np.isnan(self.values)
        i = 0
        n = len(valid)
        while i < n:
            if not valid[i]:
                i += 1
                continue
            j = i
            while j + 1 < n and valid[j + 1]:
                j += 1
            runs.append((i, j))
            i = j + 1
        return runs

    def counts(self) -> Tuple[int, int, int, int]:
        """Number of forward, backward, still and invalid frames."""
        v = self.values
        invalid = int(np.count_nonzero(np.isnan(v)))
        finite = v[~np.isnan(v)]
        return (
            int(np.count_nonzero(finite == FORWARD)),
            int(np.count_nonzero(finite == BACKWARD)),
            int(np.count_nonzero(finite == STILL)),
            invalid,
        )
