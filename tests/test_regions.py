from dataclasses import astuple

import numpy as np
import pytest

from trackanalysis.geometry.roi import CircleRegion, RectangleRegion, RegionFilter, mask_regions, parse_region
from trackanalysis.noise.body import compute_body_statistics
from trackanalysis.noise.estimator import position_noise
from trackanalysis.utils.types import FrameRecord, Trajectory


def _records(n: int) -> list:
    return [
        FrameRecord(frame=i, area=30, centroid=(float(i), 5.0), bearing=(1.0, 0.0), extent=(8.0, 2.0))
        for i in range(n)
    ]


def test_parse_region_shapes() -> None:
    assert parse_region([1, 2, 3]) == CircleRegion(1.0, 2.0, 3.0)
    assert parse_region("10,20,0,5") == RectangleRegion(0.0, 5.0, 10.0, 20.0)
    with pytest.raises(ValueError):
        parse_region([1, 2])
    with pytest.raises(ValueError):
        parse_region("a,b,c")


def test_exclusion_masks_frames() -> None:
    traj = Trajectory.from_records(3, _records(20))
    regions = RegionFilter.from_lists([], [[0.0, 0.0, 4.5, 10.0]])
    masked = mask_regions(traj, regions)
    assert masked == 5
    assert not np.any(traj.present[:5])
    assert np.all(traj.present[5:])
    assert np.isnan(traj.bearing[0, 0])


def test_inclusion_keeps_only_inside() -> None:
    traj = Trajectory.from_records(3, _records(20))
    regions = RegionFilter.from_lists([[10.0, 5.0, 2.0]], [])
    mask_regions(traj, regions)
    assert list(np.flatnonzero(traj.present)) == [8, 9, 10, 11, 12]


def test_inactive_filter_keeps_everything() -> None:
    traj = Trajectory.from_records(3, _records(10))
    assert mask_regions(traj, RegionFilter()) == 0
    assert np.all(traj.present)


def test_from_records_fills_gaps() -> None:
    recs = [r for r in _records(12) if r.frame not in (4, 5)]
    traj = Trajectory.from_records(9, recs, frame_rate_hz=10.0)
    assert traj.n_frames == 12
    assert not traj.present[4] and not traj.present[5]
    assert abs(traj.times[3] - 0.3) < 1e-12
    with pytest.raises(ValueError):
        Trajectory.from_records(9, [])


def _assert_same_summary(a: object, b: object) -> None:
    np.testing.assert_array_equal(np.array(astuple(a), dtype=np.float64), np.array(astuple(b), dtype=np.float64))


def test_masked_frames_count_as_missing() -> None:
    rng = np.random.default_rng(5)
    recs = [
        FrameRecord(
            frame=i,
            area=int(rng.integers(25, 35)),
            centroid=(2.0 * i + float(rng.normal(0.0, 0.5)), 5.0 + float(rng.normal(0.0, 0.5))),
            bearing=(1.0, 0.0),
            extent=(8.0 + float(rng.normal(0.0, 0.3)), 2.0),
        )
        for i in range(60)
    ]
    masked = Trajectory.from_records(3, recs)
    mask_regions(masked, RegionFilter.from_lists([], [[40.0, 0.0, 60.0, 10.0]]))
    dropped = set(np.flatnonzero(~masked.present).tolist())
    assert dropped
    assert 0 not in dropped and 59 not in dropped
    missing = Trajectory.from_records(3, [r for r in recs if r.frame not in dropped])

    _assert_same_summary(position_noise(masked), position_noise(missing))
    a = compute_body_statistics(masked)
    b = compute_body_statistics(missing)
    for name in ("length", "width", "area", "aspect"):
        _assert_same_summary(getattr(a, name), getattr(b, name))
