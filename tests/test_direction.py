from typing import Optional

import numpy as np

from trackanalysis.direction.labels import DirectionLabels
from trackanalysis.direction.posture import outline_perimeter, posture_confusion
from trackanalysis.direction.resolver import DirectionResolver
from trackanalysis.direction.reversals import find_reversals
from trackanalysis.segmentation.segment import SegmentKind, index_to_segment
from trackanalysis.segmentation.segmenter import segment_path
from trackanalysis.utils.types import Trajectory


def _worm(centroid: np.ndarray, bearing: Optional[np.ndarray] = None) -> Trajectory:
    """Trajectory with a three-point skeleton whose head (point 0) always faces +x."""
    n = len(centroid)
    offsets = np.array([[5.0, 0.0], [0.0, 0.0], [-5.0, 0.0]])
    return Trajectory(
        track_id=7,
        first_frame=0,
        last_frame=n - 1,
        area=np.full(n, 20, dtype=np.int64),
        centroid=centroid.astype(np.float64),
        bearing=np.tile([1.0, 0.0], (n, 1)) if bearing is None else bearing,
        extent=np.tile([10.0, 2.0], (n, 1)),
        times=np.arange(n, dtype=np.float64) / 25.0,
        skeleton=[c + offsets for c in centroid],
    )


def _forward_back_forward(rng: np.random.Generator) -> np.ndarray:
    x = np.concatenate([2.0 * np.arange(40), 80.0 - 2.0 * np.arange(1, 41), 2.0 * np.arange(1, 41)])
    return np.column_stack([x, np.zeros(len(x))]) + rng.normal(0.0, 0.5, size=(len(x), 2))


def _labels(traj: Trajectory, noise: float = 0.5) -> DirectionLabels:
    segments = segment_path(traj.centroid, noise)
    return DirectionResolver(traj, noise, 10.0).resolve(segments)


def test_head_first_motion_is_forward() -> None:
    rng = np.random.default_rng(12)
    traj = _worm(_forward_back_forward(rng))
    labels = _labels(traj)
    v = labels.values
    assert np.all(v[3:37] == 1.0)
    assert np.all(v[43:77] == -1.0)
    assert labels.is_backward(60)
    assert np.all(v[83:117] == 1.0)


def test_time_reversal_inverts_labels() -> None:
    rng = np.random.default_rng(12)
    traj = _worm(_forward_back_forward(rng))
    n = traj.n_frames
    forward = _labels(traj).values
    backward = _labels(traj.reversed()).values[::-1]
    away_from_turns = np.ones(n, dtype=bool)
    for turn in (0, 40, 80, n - 1):
        away_from_turns[max(0, turn - 3) : turn + 4] = False
    assert np.all(backward[away_from_turns] == -forward[away_from_turns])


def test_dwell_is_still() -> None:
    rng = np.random.default_rng(21)
    x = np.concatenate([2.0 * np.arange(40), np.full(30, 80.0), 80.0 + 2.0 * np.arange(1, 41)])
    c = np.column_stack([x, np.zeros(len(x))]) + rng.normal(0.0, 0.4, size=(len(x), 2))
    labels = _labels(_worm(c), 0.4)
    assert np.all(labels.values[45:65] == 0.0)
    assert labels.is_forward(10)
    assert labels.is_forward(100)


def test_unsegmented_fallback_labels_every_frame() -> None:
    rng = np.random.default_rng(8)
    n = 9
    c = np.column_stack([3.0 * np.arange(n), np.zeros(n)]) + rng.normal(0.0, 0.2, size=(n, 2))
    traj = _worm(c)
    labels = DirectionResolver(traj, 0.2, 10.0).resolve(segment_path(c, 0.2))
    assert len(labels) == n
    assert all(labels.is_valid(i) for i in range(n))


def test_no_present_frames_is_invalid() -> None:
    traj = _worm(np.full((15, 2), np.nan))
    labels = DirectionResolver(traj, 0.5, 10.0).resolve([])
    assert labels.counts() == (0, 0, 0, 15)
    assert labels.valid_runs() == []


def test_bearing_flip_marks_confusion() -> None:
    n = 20
    c = np.column_stack([np.arange(n, dtype=np.float64), np.zeros(n)])
    bearing = np.tile([1.0, 0.0], (n, 1))
    bearing[10:] = [0.0, 1.0]
    traj = _worm(c, bearing)
    traj.skeleton = None
    confused = posture_confusion(traj)
    assert confused[9] and confused[10]
    assert int(np.count_nonzero(confused)) == 2


def test_outline_perimeter_of_square() -> None:
    side = np.linspace(0.0, 10.0, 11)[:-1]
    square = np.concatenate(
        [
            np.column_stack([side, np.zeros(10)]),
            np.column_stack([np.full(10, 10.0), side]),
            np.column_stack([10.0 - side, np.full(10, 10.0)]),
            np.column_stack([np.zeros(10), 10.0 - side]),
        ]
    )
    assert abs(outline_perimeter(square) - 40.0) < 1e-4


def test_reversal_events() -> None:
    path = np.array([0.0, 1.0, 2.0, 3.0, 2.0, 1.0, 0.5, 1.0, 2.0, 3.0, 4.0, np.nan, 0.0, -2.0])
    times = np.arange(len(path), dtype=np.float64)
    events = find_reversals(path, times, 1.0)
    assert len(events) == 2
    first = events[0]
    assert (first.start, first.end) == (3, 6)
    assert abs(first.distance - 2.5) < 1e-12
    assert first.duration == 3.0
    assert (events[1].start, events[1].end) == (12, 13)
    assert find_reversals(path, times, 0.0) == []


def _rect_outline(a: int, b: int) -> np.ndarray:
    """Counter-clockwise 1 px-spaced outline of a 2a x 2b rectangle centred on the origin."""
    bottom = [(x, -b) for x in range(-a, a)]
    right = [(a, y) for y in range(-b, b)]
    top = [(x, b) for x in range(a, -a, -1)]
    left = [(-a, y) for y in range(b, -b, -1)]
    return np.array(bottom + right + top + left, dtype=np.float64)


def test_skeleton_endpoint_jump_marks_confusion() -> None:
    n = 20
    traj = _worm(np.zeros((n, 2)))
    assert traj.skeleton is not None
    for i in range(10, n):
        traj.skeleton[i] = np.array([[0.0, 3.0], [0.0, 0.0], [0.0, -3.0]])
    confused = posture_confusion(traj)
    assert list(np.flatnonzero(confused)) == [9, 10]


def test_short_wide_outline_marks_confusion() -> None:
    n = 30
    c = np.column_stack([np.arange(n, dtype=np.float64), np.zeros(n)])
    traj = _worm(c)
    offsets = np.column_stack([np.array([4.0, 2.0, 0.0, -2.0, -4.0]), np.zeros(5)])
    body = _rect_outline(5, 1)
    curled = _rect_outline(2, 2)
    traj.skeleton = [p + offsets for p in c]
    traj.skeleton_width = [np.array([0.0, 2.0, 2.0, 2.0, 0.0]) for _ in range(n)]
    traj.outline = [p + body for p in c]
    for i in (10, 11):
        traj.skeleton_width[i] = np.array([0.0, 4.0, 4.0, 4.0, 0.0])
        traj.outline[i] = c[i] + curled
    confused = posture_confusion(traj)
    assert list(np.flatnonzero(confused)) == [10, 11]


def test_direction_change_marks_turns() -> None:
    rng = np.random.default_rng(12)
    traj = _worm(_forward_back_forward(rng))
    segments = segment_path(traj.centroid, 0.5)
    change = DirectionResolver(traj, 0.5, 10.0).direction_change(segments)
    assert np.all((change >= -1.0) & (change <= 1.0))
    for turn in (40, 80):
        assert np.min(change[turn - 4 : turn + 4]) < -0.5
    assert np.count_nonzero(change == 1.0) > 0.8 * len(change)


def test_segments_carry_resolved_direction() -> None:
    rng = np.random.default_rng(21)
    x = np.concatenate([2.0 * np.arange(40), np.full(30, 80.0), 80.0 + 2.0 * np.arange(1, 41)])
    c = np.column_stack([x, np.zeros(len(x))]) + rng.normal(0.0, 0.4, size=(len(x), 2))
    traj = _worm(c)
    segments = segment_path(c, 0.4)
    assert segments
    DirectionResolver(traj, 0.4, 10.0).resolve(segments)
    assert segments[index_to_segment(segments, 10)].direction == 1
    assert segments[index_to_segment(segments, 100)].direction == 1
    dwell = segments[index_to_segment(segments, 55)]
    assert dwell.kind is SegmentKind.DWELL
    assert dwell.direction == 0
