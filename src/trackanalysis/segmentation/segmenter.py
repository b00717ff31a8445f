"""
Path segmentation state machine.

The trajectory is first carved into stationary Dwell patches, the moving remainder
is then explained by Straight fits, Straight fits that are much better explained
by circles become Arcs, and boundaries are refined until stable. Short line-like
segments that could be jitter are demoted to Clutter, and finally each Straight or
Arc segment gets its internal reversal endpoints. Dwells that were split only
by a boundary point later claimed by a line are merged back.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Deque, List, Optional, Tuple

import numpy as np
from scipy import stats

from trackanalysis.geometry.fitting import FitKind, GeometricFit
from trackanalysis.geometry.vectors import dot, length2
from trackanalysis.noise.statistics import inv_normal_tail
from trackanalysis.segmentation.segment import Segment, SegmentKind

logger = logging.getLogger(__name__)

MIN_SEGMENTABLE_FRAMES = 10
RARE_FRACTION = 0.05
MIN_DWELL_POINTS = 5
MIN_LINE_POINTS = 3
LINE_SEED_POINTS = 5
NOT_ROUND_P = 0.05
MIN_ARC_POINTS = 5
SHORT_SEGMENT_FRAMES = 20
JITTER_SIGNIFICANCE = 0.05
TREND_CONFIDENCE = 0.95
OSCILLATION_HISTORY = 6
MAX_REFINEMENT_PASSES = 500
MIN_NOISE = 1e-6


class Segmenter:
    def __init__(self, positions: np.ndarray, noise: float) -> None:
        self.p = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        self.present = ~np.isnan(self.p[:, 0]) & ~np.isnan(self.p[:, 1])
        self.n = len(self.p)
        sigma = float(noise)
        if not math.isfinite(sigma):
            sigma = 1.0
        self.sigma = max(sigma, MIN_NOISE)
        self.sigma2 = self.sigma * self.sigma
        self.rare = RARE_FRACTION / max(1, self.n)
        self.credible_dist_sq = (self.sigma * inv_normal_tail(self.rare)) ** 2

    def segment(self) -> Optional[List[Segment]]:
        """Classify the whole path.

        Returns ``None`` when there are too few frames to segment and an empty list
        when no frame has a position.
        """
        if self.n < MIN_SEGMENTABLE_FRAMES:
            logger.debug("Too few frames to segment (%d)", self.n)
            return None
        if not np.any(self.present):
            return []

        moves = self._find_dwells()
        moves = self._refine_dwells(moves)
        moves = self._find_lines(moves)
        self._promote_arcs(moves)
        moves = self._refine_lines(moves)
        for m in moves:
            if self._count(m) < MIN_LINE_POINTS and m.kind is not SegmentKind.CLUTTER:
                self._demote(m, SegmentKind.CLUTTER)
        self._reject_jitter(moves)
        moves = self._find_endpoints(moves)
        moves = self._join_dwells(moves)
        return self._tile(moves)

    # Point bookkeeping; all boundaries land on present frames.

    def _next_present(self, i: int) -> int:
        while i < self.n and not self.present[i]:
            i += 1
        return i

    def _prev_present(self, i: int) -> int:
        while i >= 0 and not self.present[i]:
            i -= 1
        return i

    def _count(self, s: Segment) -> int:
        if s.i1 < s.i0:
            return 0
        return int(np.count_nonzero(self.present[s.i0 : s.i1 + 1]))

    def _add_right_simply(self, s: Segment, i: int) -> None:
        s.i1 = i
        if s.fit is not None:
            s.fit.add(self.p[i, 0], self.p[i, 1])

    def _add_left_simply(self, s: Segment, i: int) -> None:
        s.i0 = i
        if s.fit is not None:
            s.fit.add(self.p[i, 0], self.p[i, 1])

    def _add_right(self, s: Segment, i: int) -> int:
        self._add_right_simply(s, i)
        return self._next_present(i + 1)

    def _add_left(self, s: Segment, i: int) -> int:
        self._add_left_simply(s, i)
        return self._prev_present(i - 1)

    def _sub_right(self, s: Segment) -> None:
        if s.fit is not None:
            s.fit.remove(self.p[s.i1, 0], self.p[s.i1, 1])
        s.i1 = self._prev_present(s.i1 - 1)

    def _sub_left(self, s: Segment) -> None:
        if s.fit is not None:
            s.fit.remove(self.p[s.i0, 0], self.p[s.i0, 1])
        s.i0 = self._next_present(s.i0 + 1)

    def _shift_right(self, s: Segment, i: int) -> int:
        self._sub_left(s)
        return self._add_right(s, i)

    def _present_span(self, i0: int, i1: int) -> Tuple[int, int]:
        i0 = self._next_present(max(0, i0))
        i1 = self._prev_present(min(self.n - 1, i1))
        return i0, i1

    def _residual(self, s: Segment, i: int) -> float:
        return s.squared_residual(self.p[i])

    @staticmethod
    def _demote(s: Segment, kind: SegmentKind) -> None:
        s.kind = kind
        s.fit = None
        s.endpoints = None

    # Phase 1: dwells

    def _find_dwells(self) -> List[Segment]:
        moves: List[Segment] = []
        i = 0
        while i < self.n:
            if not self.present[i]:
                i += 1
                continue
            s = Segment(SegmentKind.DWELL, i, i - 1, GeometricFit(FitKind.SPOT))
            assert s.fit is not None
            while s.fit.n < MIN_DWELL_POINTS and i < self.n:
                i = self._add_right(s, i)
            p = s.fit.probability(self.sigma2)
            while p <= self.rare and i < self.n:
                i = self._shift_right(s, i)
                p = s.fit.probability(self.sigma2)
            while p > self.rare and i < self.n:
                i = self._add_right(s, i)
                p = s.fit.probability(self.sigma2)
            gave_back = False
            if s.fit.n > MIN_DWELL_POINTS and p <= self.rare:
                i = s.i1
                self._sub_right(s)
                gave_back = True

            prev_end = moves[-1].i1 if moves else -1
            if s.fit.n >= MIN_DWELL_POINTS and (gave_back or p > self.rare):
                g0, g1 = self._present_span(prev_end + 1, s.i0 - 1)
                if g0 <= g1:
                    moves.append(Segment(SegmentKind.WEIRD, g0, g1))
                s.refit()
                moves.append(s)
            else:
                g0, _ = self._present_span(prev_end + 1, s.i1)
                moves.append(Segment(SegmentKind.WEIRD, g0, s.i1))
        return moves

    def _settle_dwell_boundary(self, last: Segment, cur: Segment) -> bool:
        """Trade the shared boundary point between two dwells while that lowers the error."""
        changed = False
        previous: Optional[Tuple[str, int]] = None
        budget = 1 + 2 * (last.size + cur.size)
        while budget > 0 and last.size > 0 and cur.size > 0:
            budget -= 1
            delta_left = self._residual(last, cur.i0) - self._residual(cur, cur.i0)
            delta_right = self._residual(cur, last.i1) - self._residual(last, last.i1)
            if delta_left >= 0.0 and delta_right >= 0.0:
                break
            to_left = delta_left < delta_right or (delta_left == delta_right and last.fit.n >= cur.fit.n)  # type: ignore[union-attr]
            move = ("left", cur.i0) if to_left else ("right", last.i1)
            if previous is not None and previous[0] != move[0] and previous[1] == move[1]:
                break
            if to_left:
                self._add_right_simply(last, cur.i0)
                self._sub_left(cur)
            else:
                self._add_left_simply(cur, last.i1)
                self._sub_right(last)
            last.refit()
            cur.refit()
            previous = move
            changed = True
        return changed

    def _refine_dwells(self, moves: List[Segment]) -> List[Segment]:
        for _ in range(MAX_REFINEMENT_PASSES):
            if len(moves) <= 1:
                break
            changed = False
            k = 1
            while k < len(moves):
                last, cur = moves[k - 1], moves[k]
                last_dwell = last.kind is SegmentKind.DWELL
                cur_dwell = cur.kind is SegmentKind.DWELL
                if not last_dwell and not cur_dwell:
                    last.i1 = cur.i1
                    cur.i0 = cur.i1 + 1
                    changed = True
                elif not last_dwell:
                    while last.size > 0 and self._residual(cur, last.i1) < self.credible_dist_sq:
                        last.i1 = self._add_left(cur, last.i1)
                        cur.refit()
                        changed = True
                elif not cur_dwell:
                    while cur.size > 0 and self._residual(last, cur.i0) < self.credible_dist_sq:
                        cur.i0 = self._add_right(last, cur.i0)
                        last.refit()
                        changed = True
                else:
                    changed = self._settle_dwell_boundary(last, cur) or changed

                if cur.size <= 0:
                    del moves[k]
                    continue
                if last.size <= 0:
                    del moves[k - 1]
                    continue
                if cur_dwell and cur.fit is not None and cur.fit.n < 2:
                    self._demote(cur, SegmentKind.WEIRD)
                    changed = True
                elif last_dwell and last.fit is not None and last.fit.n < 2:
                    self._demote(last, SegmentKind.WEIRD)
                    changed = True
                k += 1
            if not changed:
                break
        else:
            logger.warning("Dwell refinement stopped at the pass limit (%d segments)", len(moves))
        return moves

    # Phase 2: straight lines

    def _find_lines(self, moves: List[Segment]) -> List[Segment]:
        refined: List[Segment] = []
        queue: Deque[Segment] = deque(moves)
        while queue:
            s = queue.popleft()
            if s.kind is SegmentKind.DWELL or self._count(s) < MIN_LINE_POINTS:
                refined.append(s)
                continue
            ss = Segment(SegmentKind.STRAIGHT, s.i0, s.i0 - 1, GeometricFit(FitKind.LINE))
            fit = ss.fit
            assert fit is not None
            i = s.i0
            while fit.n < LINE_SEED_POINTS and i <= s.i1:
                i = self._add_right(ss, i)
            p = fit.fit().non_round_probability(self.sigma2, NOT_ROUND_P)
            while p <= self.rare and i <= s.i1:
                i = self._shift_right(ss, i)
                p = fit.fit().non_round_probability(self.sigma2, NOT_ROUND_P)
            while p > self.rare and i <= s.i1:
                i = self._add_right(ss, i)
                p = fit.fit().non_round_probability(self.sigma2, NOT_ROUND_P)
            gave_back = False
            if fit.n > LINE_SEED_POINTS and p <= self.rare:
                i = ss.i1
                self._sub_right(ss)
                fit.fit()
                gave_back = True

            if fit.n < MIN_LINE_POINTS or not (gave_back or p > self.rare):
                refined.append(s)
                continue
            if s.i0 < ss.i0:
                g0, g1 = self._present_span(s.i0, ss.i0 - 1)
                if g0 <= g1:
                    refined.append(Segment(s.kind, g0, g1))
            refined.append(ss)
            if i <= s.i1:
                s.i0 = i
                if self._count(s) < MIN_LINE_POINTS:
                    refined.append(s)
                else:
                    queue.appendleft(s)
        return refined

    # Phase 3: arcs

    def _arc_preferred(self, fit: GeometricFit) -> Tuple[bool, float]:
        p_line = fit.with_kind(FitKind.LINE).probability(self.sigma2)
        p_arc = fit.with_kind(FitKind.ARC).probability(self.sigma2)
        return p_arc > self.rare and p_arc * self.rare * fit.n > p_line, p_line

    def _promote_arcs(self, moves: List[Segment]) -> None:
        for m in moves:
            if m.kind is SegmentKind.STRAIGHT and m.fit is not None and m.fit.n >= MIN_ARC_POINTS:
                arc, _ = self._arc_preferred(m.fit)
                if arc:
                    m.set_kind(SegmentKind.ARC)
                    m.refit()

    @staticmethod
    def _signature(moves: List[Segment]) -> Tuple[int, int, int]:
        straight = sum(1 for m in moves if m.kind is SegmentKind.STRAIGHT)
        arc = sum(1 for m in moves if m.kind is SegmentKind.ARC)
        return len(moves), straight, arc

    def _try_join(self, last: Segment, cur: Segment) -> bool:
        assert last.fit is not None and cur.fit is not None
        joined = last.fit.copy().join(cur.fit)
        arc, p_line = self._arc_preferred(joined)
        if arc:
            kind = SegmentKind.ARC
        elif p_line > self.rare:
            kind = SegmentKind.STRAIGHT
        else:
            return False
        last.i1 = cur.i1
        last.fit = joined
        last.set_kind(kind)
        last.refit()
        return True

    def _trade_line_points(self, last: Segment, cur: Segment) -> bool:
        changed = False
        budget = 1 + 2 * (last.size + cur.size)
        d2ll = d2lr = d2rl = d2rr = self.credible_dist_sq
        moved = True
        while last.i1 >= last.i0 and cur.i1 >= cur.i0 and moved and budget > 0:
            moved = False
            budget -= 1
            if last.is_line:
                d2ll = self._residual(last, last.i1)
                d2lr = self._residual(last, cur.i0)
            if cur.is_line:
                d2rl = self._residual(cur, last.i1)
                d2rr = self._residual(cur, cur.i0)
            if d2ll > d2rl and d2rr > d2lr:
                # both boundary points prefer the other side; only move the clearer one
                if d2rl < d2lr:
                    d2lr = d2rr = self.credible_dist_sq
                elif d2lr < d2rl:
                    d2rl = d2ll = self.credible_dist_sq
                else:
                    d2ll = d2lr = d2rl = d2rr = self.credible_dist_sq
            if d2rl < d2ll:
                moved = True
                if cur.is_line:
                    if last.is_line:
                        self._add_left_simply(cur, last.i1)
                        self._sub_right(last)
                        last.refit()
                    else:
                        last.i1 = self._add_left(cur, last.i1)
                    cur.refit()
                elif last.is_line:
                    cur.i0 = last.i1
                    self._sub_right(last)
                    last.refit()
            elif d2lr < d2rr:
                moved = True
                if last.is_line:
                    if cur.is_line:
                        self._add_right_simply(last, cur.i0)
                        self._sub_left(cur)
                        cur.refit()
                    else:
                        cur.i0 = self._add_right(last, cur.i0)
                    last.refit()
                elif cur.is_line:
                    last.i1 = cur.i0
                    self._sub_left(cur)
                    cur.refit()
            changed = changed or moved
        return changed

    @staticmethod
    def _too_small(s: Segment) -> bool:
        return s.i1 - s.i0 < 2 + (1 if s.kind is SegmentKind.ARC else 0)

    def _refine_lines(self, moves: List[Segment]) -> List[Segment]:
        history: Deque[Tuple[int, int, int]] = deque(maxlen=OSCILLATION_HISTORY)
        for _ in range(MAX_REFINEMENT_PASSES):
            if len(moves) <= 1:
                break
            signature = self._signature(moves)
            if len(history) == OSCILLATION_HISTORY and all(h == signature for h in history):
                logger.debug("Line refinement oscillating at %s; stopping", signature)
                break
            history.append(signature)
            changed = False
            k = 1
            while k < len(moves):
                last, cur = moves[k - 1], moves[k]
                if last.kind is SegmentKind.DWELL or cur.kind is SegmentKind.DWELL:
                    k += 1
                    continue
                if not (last.is_line or cur.is_line):
                    k += 1
                    continue
                if last.is_line and cur.is_line and self._try_join(last, cur):
                    del moves[k]
                    changed = True
                    continue
                changed = self._trade_line_points(last, cur) or changed

                if last.i1 < last.i0:
                    del moves[k - 1]
                    changed = True
                    continue
                if cur.i1 < cur.i0:
                    del moves[k]
                    changed = True
                    continue
                if self._too_small(last):
                    self._demote(last, SegmentKind.CLUTTER)
                elif self._too_small(cur):
                    self._demote(cur, SegmentKind.CLUTTER)
                k += 1
            if not changed:
                break
        else:
            logger.warning("Line refinement stopped at the pass limit (%d segments)", len(moves))
        return moves

    # Phase 4: jitter rejection

    def _trend_is_significant(self, m: Segment, idx: np.ndarray) -> bool:
        tfit = GeometricFit(FitKind.LINE)
        if m.kind is SegmentKind.STRAIGHT:
            for i in idx:
                tfit.add(float(i - m.i0), m.parameterize(self.p[i]))
        else:
            params = np.array([m.parameterize(self.p[i]) for i in idx], dtype=np.float64)
            ordered = np.sort(params)
            cut = math.pi
            widest = 2.0 * math.pi + ordered[0] - ordered[-1]
            for k in range(1, len(ordered)):
                gap = ordered[k] - ordered[k - 1]
                if gap > widest:
                    widest = gap
                    cut = 0.5 * (ordered[k] + ordered[k - 1])
            for i, a in zip(idx, params):
                tfit.add(float(i - m.i0), float(a - 2.0 * math.pi) if a > cut else float(a))
        df = len(idx) - 2
        if df <= 0:
            return False
        return float(stats.t.cdf(tfit.trend_t_score(), df)) >= TREND_CONFIDENCE

    def _reject_jitter(self, moves: List[Segment]) -> None:
        for m in moves:
            if not m.is_line or m.size > SHORT_SEGMENT_FRAMES:
                continue
            idx = np.flatnonzero(self.present[m.i0 : m.i1 + 1]) + m.i0
            if len(idx) < 3:
                continue
            u = self.p[idx[1]] - self.p[idx[0]]
            forward = 0
            reversals = 0
            for a, b in zip(idx[1:-1], idx[2:]):
                v = self.p[b] - self.p[a]
                if dot(u, v) > 0.0:
                    forward += 1
                    u = u + v
                else:
                    reversals += 1
                    u = v
            if reversals == 0:
                continue
            total = forward + reversals
            if float(stats.binom.cdf(reversals, total, 0.5)) <= JITTER_SIGNIFICANCE:
                continue
            if not self._trend_is_significant(m, idx):
                self._demote(m, SegmentKind.CLUTTER)

    # Phase 5: endpoints

    def _find_endpoints(self, moves: List[Segment]) -> List[Segment]:
        cred = self.credible_dist_sq
        p = self.p
        for n, m in enumerate(moves):
            if not m.is_line or m.fit is None or m.i1 < m.i0:
                continue
            extend_pre = False
            extend_post = False
            endpoint_list: List[int] = []
            u = np.zeros(2, dtype=np.float64)
            e0 = e1 = m.i0
            i = m.i0 + 1
            while i <= m.i1 and length2(u) < cred:
                if self.present[i]:
                    v = m.delta_vector(p[e0], p[i])
                    if dot(u, v) < 0.0:
                        e0, e1 = e1, i
                        u = m.delta_vector(p[e0], p[e1])
                    elif length2(u) < length2(v):
                        e1 = i
                        u = v
                i += 1

            if n > 0 and not moves[n - 1].is_line and moves[n - 1].i1 >= moves[n - 1].i0:
                ss = moves[n - 1]
                j = ss.i1
                v = m.delta_vector(p[j], p[e0])
                if dot(u, v) > 0.0 and self._residual(m, j) < cred and length2(u) + length2(v) >= cred:
                    self._sub_right(ss)
                    if ss.fit is not None:
                        ss.refit()
                    m.i0 = e0 = j
                    u = u + v
                    extend_pre = True

            while i <= m.i1:
                if self.present[i]:
                    v = m.delta_vector(p[e1], p[i])
                    if dot(u, v) >= 0.0:
                        e1 = i
                        u = u + v
                    elif length2(v) >= cred:
                        endpoint_list.append(e0)
                        e0, e1 = e1, i
                        u = v
                i += 1

            if n < len(moves) - 1 and not moves[n + 1].is_line and moves[n + 1].i1 >= moves[n + 1].i0:
                ss = moves[n + 1]
                j = ss.i0
                v = m.delta_vector(p[e1], p[j])
                if dot(u, v) > 0.0 and self._residual(m, j) < cred and length2(u) + length2(v) >= cred:
                    self._sub_left(ss)
                    if ss.fit is not None:
                        ss.refit()
                    m.i1 = e1 = j
                    u = u + v
                    extend_post = True

            if extend_pre:
                m.fit.add(p[m.i0, 0], p[m.i0, 1])
            if extend_post:
                m.fit.add(p[m.i1, 0], p[m.i1, 1])
            if extend_pre or extend_post:
                m.refit()
            if length2(u) >= cred or endpoint_list:
                if e0 == m.i0 and e1 == m.i1:
                    m.endpoints = None
                else:
                    m.endpoints = tuple(endpoint_list + [e0, e1])
            else:
                m.endpoints = ()
        return [m for m in moves if m.i1 >= m.i0]

    def _join_dwells(self, moves: List[Segment]) -> List[Segment]:
        """Merge neighbouring dwells that one spot explains, once boundary points have moved to the lines."""
        joined: List[Segment] = []
        for m in moves:
            last = joined[-1] if joined else None
            if (
                last is not None
                and last.kind is SegmentKind.DWELL
                and m.kind is SegmentKind.DWELL
                and last.fit is not None
                and m.fit is not None
            ):
                fit = last.fit.copy().join(m.fit)
                if fit.probability(self.sigma2) > self.rare:
                    last.i1 = m.i1
                    last.fit = fit
                    last.refit()
                    continue
            joined.append(m)
        return joined

    def _tile(self, moves: List[Segment]) -> List[Segment]:
        """Stretch segments over the absent frames between them so they cover every offset."""
        if not moves:
            return [Segment(SegmentKind.WEIRD, 0, self.n - 1)]
        moves[0].i0 = 0
        for a, b in zip(moves, moves[1:]):
            a.i1 = b.i0 - 1
        moves[-1].i1 = self.n - 1
        return moves


def segment_path(positions: np.ndarray, noise: float) -> Optional[List[Segment]]:
    return Segmenter(positions, noise).segment()
