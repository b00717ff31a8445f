from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from trackanalysis.geometry.fitting import FitKind, GeometricFit


class SegmentKind(Enum):
    WEIRD = "weird"
    DWELL = "dwell"
    CLUTTER = "clutter"
    STRAIGHT = "straight"
    ARC = "arc"

    @property
    def fit_kind(self) -> Optional[FitKind]:
        return _FIT_KINDS.get(self)


_FIT_KINDS = {
    SegmentKind.DWELL: FitKind.SPOT,
    SegmentKind.STRAIGHT: FitKind.LINE,
    SegmentKind.ARC: FitKind.ARC,
}


@dataclass
class Segment:
    """A classified frame range ``[i0, i1]`` (inclusive) of one trajectory.

    ``endpoints`` is ``None`` when a single direction spans the whole segment, an
    empty tuple when no reliable direction was found, and otherwise the ordered
    frame offsets between which the direction stays constant. ``direction`` is
    the resolved sign (+1 forward, -1 backward) at the first labelled frame, 0
    for dwells and unlabelled segments.
    """

    kind: SegmentKind
    i0: int
    i1: int
    fit: Optional[GeometricFit] = None
    endpoints: Optional[Tuple[int, ...]] = None
    direction: int = 0

    @property
    def size(self) -> int:
        return 1 + self.i1 - self.i0

    @property
    def is_line(self) -> bool:
        return self.kind in (SegmentKind.STRAIGHT, SegmentKind.ARC)

    def set_kind(self, kind: SegmentKind) -> None:
        self.kind = kind
        fk = kind.fit_kind
        if fk is None:
            return
        if self.fit is not None:
            self.fit.kind = fk

    def refit(self) -> None:
        if self.fit is not None and self.kind.fit_kind is not None:
            self.fit.kind = self.kind.fit_kind
            self.fit.fit()

    def squared_residual(self, p: np.ndarray) -> float:
        if self.fit is None or self.kind.fit_kind is None:
            return math.nan
        return self.fit.squared_residual(float(p[0]), float(p[1]))

    def contains(self, i: int) -> bool:
        return self.i0 <= i <= self.i1

    @property
    def has_direction(self) -> bool:
        return self.is_line and (self.endpoints is None or len(self.endpoints) > 1)

    @property
    def has_several_directions(self) -> bool:
        return self.is_line and self.endpoints is not None and len(self.endpoints) > 2

    @property
    def n_directions(self) -> int:
        if not self.is_line:
            return 0
        if self.endpoints is None:
            return 1
        return max(0, len(self.endpoints) - 1)

    def delta_vector(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Displacement u -> v projected onto the fitted path direction."""
        if self.fit is None or not self.is_line:
            return np.asarray(v, dtype=np.float64) - np.asarray(u, dtype=np.float64)
        dx, dy = self.fit.direction(float(u[0]), float(u[1]), float(v[0]), float(v[1]))
        return np.array([dx, dy], dtype=np.float64)

    def present_bounds(self, positions: np.ndarray) -> Tuple[int, int]:
        """First and last offsets in the segment with a present position."""
        j0, j1 = self.i0, self.i1
        while j0 < j1 and np.isnan(positions[j0][0]):
            j0 += 1
        while j1 > j0 and np.isnan(positions[j1][0]):
            j1 -= 1
        return j0, j1

    def _span(self, positions: np.ndarray, k: Optional[int] = None) -> Tuple[int, int]:
        if self.endpoints is None or len(self.endpoints) < 2:
            return self.present_bounds(positions)
        if k is None:
            return self.endpoints[0], self.endpoints[1]
        return self.endpoints[k], self.endpoints[k + 1]

    def initial_vector(self, positions: np.ndarray) -> np.ndarray:
        j0, j1 = self._span(positions)
        return self.delta_vector(positions[j0], positions[j1])

    def final_vector(self, positions: np.ndarray) -> np.ndarray:
        if self.endpoints is None or len(self.endpoints) < 2:
            j0, j1 = self.present_bounds(positions)
        else:
            j0, j1 = self.endpoints[-2], self.endpoints[-1]
        return self.delta_vector(positions[j0], positions[j1])

    def pick_vector(self, positions: np.ndarray, k: int) -> np.ndarray:
        j0, j1 = self._span(positions, k)
        return self.delta_vector(positions[j0], positions[j1])

    def snap(self, p: np.ndarray) -> np.ndarray:
        """Project a point onto the segment's line or arc; other kinds are unchanged."""
        if self.fit is None or not self.is_line:
            return np.asarray(p, dtype=np.float64).copy()
        x, y = self.fit.snap(float(p[0]), float(p[1]))
        return np.array([x, y], dtype=np.float64)

    def parameterize(self, p: np.ndarray) -> float:
        if self.fit is None or not self.is_line:
            return 0.0
        return self.fit.coordinate(float(p[0]), float(p[1]))

    def distance_traversed(self, positions: np.ndarray, k: Optional[int] = None) -> float:
        """Distance covered between consecutive endpoints (all of them when ``k`` is None)."""
        if k is None:
            if self.endpoints is None:
                return self.distance_traversed(positions, 0)
            return float(sum(self.distance_traversed(positions, j) for j in range(len(self.endpoints) - 1)))
        if self.endpoints is None:
            if k != 0:
                return 0.0
            j0, j1 = self.present_bounds(positions)
        else:
            if k < 0 or k >= len(self.endpoints) - 1:
                return 0.0
            j0, j1 = self.endpoints[k], self.endpoints[k + 1]
        p0 = positions[j0]
        p1 = positions[j1]
        if self.kind is SegmentKind.ARC and self.fit is not None and math.isfinite(self.fit.arc.radius):
            ang = self.fit.arc_angle(float(p0[0]), float(p0[1]), float(p1[0]), float(p1[1]))
            return abs(self.fit.arc.radius * ang)
        return float(math.hypot(float(p1[0] - p0[0]), float(p1[1] - p0[1])))


def index_to_segment(segments: Sequence[Segment], i: int) -> int:
    """Index of the segment containing frame offset ``i``, or -1."""
    if not segments:
        return -1
    lo, hi = 0, len(segments) - 1
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if i < segments[mid].i0:
            hi = mid
        else:
            lo = mid
    if segments[lo].i0 <= i <= segments[lo].i1:
        return lo
    if segments[hi].i0 <= i <= segments[hi].i1:
        return hi
    return -1


def path_length(segments: Sequence[Segment], positions: np.ndarray, i0: int, i1: int) -> float:
    """Directional distance covered by the segments overlapping ``[i0, i1]``."""
    if not segments:
        return 0.0
    j0 = index_to_segment(segments, i0)
    j1 = index_to_segment(segments, i1)
    if j0 < 0 or j1 < 0:
        return 0.0
    total = 0.0
    for s in segments[j0 : j1 + 1]:
        if not s.has_direction:
            continue
        total += float(np.hypot(*s.initial_vector(positions)))
        if s.has_several_directions and s.endpoints is not None:
            for k in range(1, len(s.endpoints) - 1):
                total += float(np.hypot(*s.pick_vector(positions, k)))
    return total


def segment_kinds(segments: Sequence[Segment]) -> List[SegmentKind]:
    return [s.kind for s in segments]
