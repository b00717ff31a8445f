import math

import numpy as np
import pytest

from trackanalysis.segmentation.segment import SegmentKind, index_to_segment, segment_kinds
from trackanalysis.segmentation.segmenter import Segmenter, segment_path


def _straight_dwell_arc(rng: np.random.Generator, sigma: float = 0.5) -> np.ndarray:
    straight = np.column_stack([2.0 * np.arange(50), np.zeros(50)])
    dwell = np.tile([100.0, 0.0], (20, 1))
    phi = (np.arange(50) + 1) * (2.0 * math.pi / 3.0) / 50
    arc = np.column_stack([100.0 + 60.0 * np.sin(phi), 60.0 - 60.0 * np.cos(phi)])
    clean = np.vstack([straight, dwell, arc])
    return clean + rng.normal(0.0, sigma, size=clean.shape)


def _assert_tiles(segments: list, n: int) -> None:
    assert segments[0].i0 == 0
    assert segments[-1].i1 == n - 1
    for a, b in zip(segments, segments[1:]):
        assert b.i0 == a.i1 + 1
    for s in segments:
        assert s.i1 >= s.i0


def test_too_short_is_not_segmented() -> None:
    pos = np.column_stack([np.arange(9.0), np.zeros(9)])
    assert segment_path(pos, 0.5) is None


def test_no_present_frames_gives_empty_list() -> None:
    assert segment_path(np.full((30, 2), np.nan), 0.5) == []


def test_random_walk_tiles_frame_range() -> None:
    rng = np.random.default_rng(1)
    n = 300
    pos = np.cumsum(rng.normal(0.0, 1.5, size=(n, 2)), axis=0)
    pos[40:47] = np.nan
    pos[200] = np.nan
    segments = segment_path(pos, 0.5)
    assert segments
    _assert_tiles(segments, n)
    for i in range(n):
        assert index_to_segment(segments, i) >= 0


def _assert_fits_cover_present(segments: list, pos: np.ndarray) -> None:
    present = ~np.isnan(pos[:, 0])
    for s in segments:
        if s.fit is not None:
            assert s.fit.n == int(np.count_nonzero(present[s.i0 : s.i1 + 1]))


@pytest.mark.parametrize("seed", [0, 3, 6, 9, 42])
def test_straight_dwell_arc_scenario(seed: int) -> None:
    rng = np.random.default_rng(seed)
    pos = _straight_dwell_arc(rng)
    segments = Segmenter(pos, 0.5).segment()
    assert segments
    _assert_tiles(segments, len(pos))
    _assert_fits_cover_present(segments, pos)

    assert segment_kinds(segments) == [SegmentKind.STRAIGHT, SegmentKind.DWELL, SegmentKind.ARC]
    straight, dwell, arc = segments
    assert abs(dwell.i0 - 50) <= 2
    assert abs(arc.i0 - 70) <= 2
    assert arc.fit is not None
    assert abs(arc.fit.arc.radius - 60.0) < 0.05 * 60.0
    assert straight.has_direction
    assert not dwell.has_direction


def test_gap_inside_straight_run() -> None:
    rng = np.random.default_rng(9)
    n = 40
    pos = np.column_stack([3.0 * np.arange(n), np.zeros(n)]) + rng.normal(0.0, 0.3, size=(n, 2))
    pos[15:25] = np.nan
    segments = segment_path(pos, 0.3)
    assert segments is not None
    assert len(segments) == 1
    assert segments[0].kind is SegmentKind.STRAIGHT
    _assert_fits_cover_present(segments, pos)
    assert (segments[0].i0, segments[0].i1) == (0, n - 1)
    assert segments[0].contains(20)
    assert not segments[0].contains(n)


def test_back_and_forth_gets_internal_endpoints() -> None:
    rng = np.random.default_rng(4)
    x = np.concatenate([2.0 * np.arange(40), 80.0 - 2.0 * np.arange(1, 41), 2.0 * np.arange(1, 41)])
    pos = np.column_stack([x, np.zeros(len(x))]) + rng.normal(0.0, 0.3, size=(len(x), 2))
    segments = segment_path(pos, 0.3)
    assert segments is not None
    lines = [s for s in segments if s.is_line]
    assert sum(s.n_directions for s in lines) >= 3
