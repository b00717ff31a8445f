"""
Forward/backward resolution along a trajectory.

With a segmentation, signs are carried segment by segment and flipped at boundaries
whose adjoining directions disagree. Without one, the path is covered by overlapping
position-averaging windows and reversals are read off the angle between window
triples.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from trackanalysis.direction.labels import STILL, DirectionLabels
from trackanalysis.direction.posture import posture_confusion
from trackanalysis.geometry.vectors import dot, polyline_length, unit_dot
from trackanalysis.noise.statistics import inv_normal_tail
from trackanalysis.segmentation.segment import Segment, SegmentKind, path_length
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)

SURE_FLIP = -0.5
DOUBTFUL_FLIP = 0.2
SHORT_SEGMENT_FRAMES = 10
LOOKAHEAD_AGREEMENT = 0.5
REVERSAL_COSINE = -0.9
MIN_SURE_RUN = 10
SMALLNESS_QUANTILE_FRAMES = 200


def _next_directional(segments: Sequence[Segment], i: int) -> int:
    j = i + 1
    while j < len(segments) and not segments[j].has_direction:
        j += 1
    return j


def _consistent_pieces(confused: np.ndarray) -> List[List[int]]:
    pieces: List[List[int]] = []
    n = len(confused)
    i = 0
    while i < n:
        j = i
        while j < n and confused[j] == confused[i]:
            j += 1
        if not confused[i]:
            pieces.append([i, j - 1])
        i = j
    return pieces


def _head_first_vote(traj: Trajectory, labels: np.ndarray, i0: int, i1: int) -> float:
    """Net agreement between the labels and motion toward skeleton point 0."""
    if traj.skeleton is None:
        return 0.0
    pos = traj.centroid
    present = traj.present
    vote = 0.0
    prev = -1
    for i in range(i0, i1 + 1):
        if not present[i]:
            continue
        if prev >= 0 and traj.has_skeleton(i) and labels[i] != STILL and not math.isnan(labels[i]):
            skel = traj.skeleton[i]
            assert skel is not None
            head = skel[0] - skel[-1]
            d = dot(pos[i] - pos[prev], head)
            if d != 0.0:
                vote += float(labels[i]) * math.copysign(1.0, d)
        prev = i
    return vote


def _skeletal_flow(traj: Trajectory, a0: int, a1: int, b0: int, b1: int) -> Optional[float]:
    """Sum of dot products of matching skeleton-point displacements over two spans."""
    if traj.skeleton is None:
        return None
    frames = (a0, a1, b0, b1)
    if not all(traj.has_skeleton(i) for i in frames):
        return None
    skels = [traj.skeleton[i] for i in frames]
    size = len(skels[0])  # type: ignore[arg-type]
    if any(len(s) != size for s in skels):  # type: ignore[arg-type]
        return None
    u = skels[1] - skels[0]  # type: ignore[operator]
    v = skels[3] - skels[2]  # type: ignore[operator]
    return float(np.sum(u * v))


def _leading_sign(values: np.ndarray) -> int:
    labelled = values[~np.isnan(values)]
    return int(np.sign(labelled[0])) if len(labelled) else 0


class DirectionResolver:
    def __init__(self, traj: Trajectory, noise: float, body_length: float, last_quartile_noise: float = 0.0) -> None:
        self.traj = traj
        self.noise = noise
        self.body_length = body_length
        self.last_quartile_noise = last_quartile_noise
        self._confusion: Optional[np.ndarray] = None

    @property
    def confusion(self) -> np.ndarray:
        if self._confusion is None:
            self._confusion = posture_confusion(self.traj)
        return self._confusion

    def resolve(self, segments: Optional[Sequence[Segment]], min_travel: float = 0.0) -> DirectionLabels:
        n = self.traj.n_frames
        if n == 0 or not np.any(self.traj.present):
            return DirectionLabels.invalid(n)
        if segments is None:
            return self.resolve_unsegmented()
        return self.resolve_segmented(segments, min_travel)

    def direction_change(self, segments: Optional[Sequence[Segment]]) -> np.ndarray:
        """Cosine of the heading change per frame (1 where the heading holds)."""
        n = self.traj.n_frames
        if segments is None:
            return self._window_direction_change()
        pos = self.traj.centroid
        out = np.ones(n, dtype=np.float64)
        for i, s in enumerate(segments):
            if not s.has_direction:
                continue
            if s.has_several_directions and s.endpoints is not None:
                for k in range(1, len(s.endpoints) - 1):
                    out[s.endpoints[k]] = -1.0
            j = _next_directional(segments, i)
            if j < len(segments):
                ss = segments[j]
                c = unit_dot(s.final_vector(pos), ss.initial_vector(pos))
                out[s.present_bounds(pos)[1]] = c
                out[ss.present_bounds(pos)[0]] = c
        return out

    # Segmented

    def _boundary_flips(self, s: Segment, ss: Segment, udv: float) -> bool:
        pos = self.traj.centroid
        i0 = s.present_bounds(pos)[0] if s.endpoints is None else s.endpoints[-2]
        i1 = s.present_bounds(pos)[1] if s.endpoints is None else s.endpoints[-1]
        ii0 = ss.present_bounds(pos)[0] if ss.endpoints is None else ss.endpoints[0]
        ii1 = ss.present_bounds(pos)[1] if ss.endpoints is None else ss.endpoints[1]
        flow = _skeletal_flow(self.traj, i0, i1, ii0, ii1)
        if flow is None:
            return udv < 0.0
        return flow <= 0.0

    @staticmethod
    def _fill_between(q: np.ndarray, segments: Sequence[Segment], i: int, j: int, g: float) -> None:
        for s in segments[i + 1 : j]:
            q[s.i0 : s.i1 + 1] = STILL if s.kind is SegmentKind.DWELL else g

    def _fill_directional(self, q: np.ndarray, s: Segment, g: float) -> float:
        h = s.i0
        if s.has_several_directions and s.endpoints is not None:
            for k in range(1, len(s.endpoints) - 1):
                q[h : s.endpoints[k] + 1] = g
                h = s.endpoints[k] + 1
                g = -g
        q[h : s.i1 + 1] = g
        return g

    def resolve_segmented(self, segments: Sequence[Segment], min_travel: float = 0.0) -> DirectionLabels:
        traj = self.traj
        n = traj.n_frames
        pos = traj.centroid
        q = np.zeros(n, dtype=np.float64)

        pieces = _consistent_pieces(self.confusion)
        ok = [path_length(segments, pos, a, b) >= min_travel for a, b in pieces]
        for k in range(1, len(pieces)):
            if ok[k] and ok[k - 1]:
                mid = (pieces[k - 1][1] + pieces[k][0]) // 2
                pieces[k - 1][1] = mid
                pieces[k][0] = mid + 1
        good = [p for p, keep in zip(pieces, ok) if keep]

        g = 1.0
        i = 0
        while i < len(segments):
            s = segments[i]
            if not s.has_direction:
                q[s.i0 : s.i1 + 1] = STILL if s.kind is SegmentKind.DWELL else g
                i += 1
                continue
            g = self._fill_directional(q, s, g)
            j = _next_directional(segments, i)
            if j >= len(segments):
                self._fill_between(q, segments, i, j, g)
                break
            ss = segments[j]
            u = s.final_vector(pos)
            udv = unit_dot(u, ss.initial_vector(pos))
            carried = g
            if udv < SURE_FLIP:
                g = -g
            elif udv < 0.0 or (udv < DOUBTFUL_FLIP and ss.size < SHORT_SEGMENT_FRAMES):
                k = _next_directional(segments, j) if ss.size < SHORT_SEGMENT_FRAMES else len(segments)
                if k < len(segments) and segments[k].size >= 2 * ss.size:
                    sss = segments[k]
                    w = sss.initial_vector(pos)
                    uw = unit_dot(u, w)
                    if abs(uw) > LOOKAHEAD_AGREEMENT:
                        # the longer third segment settles both boundaries
                        self._fill_between(q, segments, i, j, carried)
                        x = ss.final_vector(pos)
                        ss_sign = -g if udv + unit_dot(w, x) < 0.0 else g
                        ss_end = self._fill_directional(q, ss, ss_sign)
                        self._fill_between(q, segments, j, k, ss_end)
                        if uw < 0.0:
                            g = -g
                        i = k
                        continue
                if self._boundary_flips(s, ss, udv):
                    g = -g
            self._fill_between(q, segments, i, j, carried)
            i = j

        for a, b in good:
            vote = _head_first_vote(traj, q, a, b)
            if vote == 0.0:
                vote = float(np.nansum(q[a : b + 1]))
            if vote < 0.0:
                q[a : b + 1] = -q[a : b + 1]

        labels = np.full(n, np.nan, dtype=np.float64)
        for a, b in good:
            labels[a : b + 1] = q[a : b + 1]
        for s in segments:
            s.direction = _leading_sign(labels[s.i0 : s.i1 + 1])
        logger.debug(
            "Trajectory %d: %d usable direction piece(s) of %d", traj.track_id, len(good), len(pieces)
        )
        return DirectionLabels(labels)

    # Unsegmented

    def _accuracy_and_scale(self) -> Tuple[float, float]:
        n = max(1, self.traj.n_frames)
        accuracy = self.noise * inv_normal_tail(0.05 / n)
        if not (accuracy > 0.0 and math.isfinite(accuracy)):
            accuracy = 1.0
        scale = 1.0
        if self.body_length > 0.0 and math.isfinite(self.body_length):
            scale = (self.body_length / accuracy) ** (1.0 / 3.0)
        return accuracy, scale

    def _filled_positions(self) -> np.ndarray:
        """Centroids with absent rows filled from the nearest earlier (else later) frame."""
        pos = self.traj.centroid.copy()
        present = self.traj.present
        idx = np.where(present, np.arange(len(pos)), -1)
        idx = np.maximum.accumulate(idx)
        first = int(np.flatnonzero(present)[0])
        idx[idx < 0] = first
        return pos[idx]

    def _windows(self, pos: np.ndarray, size: float, exclusive: float) -> List[List[int]]:
        n = len(pos)
        windows: List[List[int]] = []
        start = 0
        anchor = 0
        for i in range(n):
            if math.hypot(*(pos[i] - pos[anchor])) > size:
                windows.append([start, i])
                j = i
                while j > anchor and math.hypot(*(pos[j] - pos[anchor])) >= exclusive:
                    j -= 1
                start = anchor = j + 1
        windows.append([start, n])

        # make the windows contiguous, giving shared frames to the closer centre
        for k in range(1, len(windows)):
            prev, cur = windows[k - 1], windows[k]
            if prev[1] > cur[0]:
                c_prev = pos[prev[0] : prev[1]].mean(axis=0)
                c_cur = pos[cur[0] : cur[1]].mean(axis=0)
                split = cur[0]
                while split < prev[1] and np.sum((pos[split] - c_prev) ** 2) < np.sum((pos[split] - c_cur) ** 2):
                    split += 1
                split = max(split, prev[0] + 1)
                prev[1] = split
                cur[0] = split
            elif prev[1] < cur[0]:
                if cur[1] - cur[0] < prev[1] - prev[0]:
                    cur[0] = prev[1]
                else:
                    prev[1] = cur[0]
        windows = [w for w in windows if w[1] > w[0]]
        for k in range(1, len(windows)):
            windows[k][0] = windows[k - 1][1]
        windows[0][0] = 0
        windows[-1][1] = n
        return [w for w in windows if w[1] > w[0]]

    def _window_direction_change(self) -> np.ndarray:
        n = self.traj.n_frames
        out = np.zeros(n, dtype=np.float64)
        if n == 0 or not np.any(self.traj.present):
            return out
        pos = self._filled_positions()
        accuracy, scale = self._accuracy_and_scale()
        size = accuracy * scale
        windows = self._windows(pos, size, max(accuracy, 0.5 * size))
        count = len(windows)
        centers = np.array([pos[a:b].mean(axis=0) for a, b in windows])
        mids = [(a + b + 1) // 2 for a, b in windows]
        bounds = [0] + mids + [n]
        betweeners = []
        for k in range(count + 1):
            a, b = bounds[k], bounds[k + 1]
            if b > a:
                betweeners.append(pos[a:b].mean(axis=0))
            else:
                betweeners.append(centers[min(k, count - 1)])
        bw = np.array(betweeners)

        for k, (a, b) in enumerate(windows):
            if k < 2 or k > count - 3:
                continue
            c_wide = unit_dot(centers[k] - centers[k - 2], centers[k + 2] - centers[k])
            c_near = unit_dot(centers[k] - centers[k - 1], centers[k + 1] - centers[k])
            if abs(c_wide) < abs(c_near):
                c_wide = c_near
            first = unit_dot(bw[k] - bw[k - 2], bw[k + 2] - bw[k])
            second = unit_dot(bw[k + 1] - bw[k - 1], bw[k + 3] - bw[k + 1])
            if abs(first) < abs(c_wide):
                first = c_wide
            if abs(second) < abs(c_wide):
                second = c_wide
            half = (1 + a + b) // 2
            out[a:half] = first
            out[half:b] = second
        return out

    def _bigness(self) -> np.ndarray:
        traj = self.traj
        n = traj.n_frames
        big = np.zeros(n, dtype=np.float64)
        if traj.skeleton is not None:
            for i, skel in enumerate(traj.skeleton):
                if skel is not None:
                    big[i] = polyline_length(skel)
        elif traj.outline is not None:
            for i, outline in enumerate(traj.outline):
                if outline is None or len(outline) < 6:
                    big[i] = np.nan
                    continue
                m = len(outline)
                pts = outline.astype(np.float64)
                u = np.roll(pts, -(m // 6), axis=0) - pts
                w = np.roll(pts, -(5 * m // 6), axis=0) - pts
                nu = np.hypot(u[:, 0], u[:, 1])
                nw = np.hypot(w[:, 0], w[:, 1])
                with np.errstate(divide="ignore", invalid="ignore"):
                    cos = np.sum(u * w, axis=1) / (nu * nw)
                big[i] = float(np.nanmax(cos)) if np.any(np.isfinite(cos)) else np.nan
        else:
            length = traj.extent[:, 0]
            width = traj.extent[:, 1]
            area = traj.area.astype(np.float64)
            with np.errstate(divide="ignore", invalid="ignore"):
                ratio = (width / length) / area
            big = np.where(np.isfinite(ratio), ratio, 0.0)
        return big

    def resolve_unsegmented(self) -> DirectionLabels:
        traj = self.traj
        n = traj.n_frames
        pos = self._filled_positions()
        accuracy, _ = self._accuracy_and_scale()
        reference = self._window_direction_change()
        q = np.zeros(n, dtype=np.float64)

        bigness = self._bigness()
        ordered = np.sort(np.nan_to_num(bigness, nan=np.inf))
        smallness = float(ordered[(n - 1) // min(SMALLNESS_QUANTILE_FRAMES, n)])

        sign = 1.0
        sure = [0, 0]
        sure_runs: List[List[int]] = []
        acc2 = accuracy * accuracy
        i = 0
        while i < n:
            if reference[i] >= REVERSAL_COSINE:
                q[i] = sign
                sure[1] = i
                i += 1
                continue
            j = i + 1
            while j < n and reference[j] <= 0.0:
                j += 1
            k = i - 1
            while k >= 0 and reference[k] >= REVERSAL_COSINE and np.sum((pos[k] - pos[i]) ** 2) <= acc2:
                k -= 1
            l = j + 1
            while j < n and l < n and reference[l] >= REVERSAL_COSINE and np.sum((pos[l] - pos[j]) ** 2) <= acc2:
                l += 1
            q[i:j] = STILL
            if k >= 0 and j < n and l < n:
                if unit_dot(pos[i] - pos[k], pos[l] - pos[j]) < 0.0:
                    sign = -sign
            if np.any(bigness[i:j] < smallness):
                sure_runs.append(sure)
                sure = [j, j]
            i = j
        sure_runs.append(sure)

        for a, b in sure_runs:
            if b - a < MIN_SURE_RUN:
                continue
            vote = _head_first_vote(traj, q, a + 1, b)
            if vote == 0.0:
                steps = np.hypot(*(pos[a + 1 : b + 1] - pos[a:b]).T) - self.last_quartile_noise
                steps = np.maximum(steps, 0.0)
                labels = q[a + 1 : b + 1]
                vote = float(np.sum(steps[labels > 0.0]) - np.sum(steps[labels < 0.0]))
            if vote < 0.0:
                q[a + 1 : b + 1] = -q[a + 1 : b + 1]
        return DirectionLabels(q)
