import math

import numpy as np

from trackanalysis.pipeline.analyzer import TrajectoryAnalyzer
from trackanalysis.pipeline.batch import BatchRunner
from trackanalysis.pipeline.config import AnalysisConfig
from trackanalysis.segmentation.segment import SegmentKind
from trackanalysis.utils.types import FrameRecord, Trajectory


def _traj(track_id: int, centroid: np.ndarray, area: int = 60) -> Trajectory:
    n = len(centroid)
    return Trajectory(
        track_id=track_id,
        first_frame=100,
        last_frame=100 + n - 1,
        area=np.full(n, area, dtype=np.int64),
        centroid=centroid.astype(np.float64),
        bearing=np.tile([1.0, 0.0], (n, 1)),
        extent=np.tile([12.0, 3.0], (n, 1)),
        times=(100 + np.arange(n, dtype=np.float64)) / 25.0,
    )


def _cruise(track_id: int, seed: int, n: int = 120) -> Trajectory:
    rng = np.random.default_rng(seed)
    c = np.column_stack([2.0 * np.arange(n), 50.0 + np.zeros(n)]) + rng.normal(0.0, 0.4, size=(n, 2))
    return _traj(track_id, c)


def _cfg(**overrides: object) -> AnalysisConfig:
    data = {"measures": ["speed", "bias", "path", "x"], "workers": 2}
    data.update(overrides)
    return AnalysisConfig.from_dict(data)


def test_analyze_single_trajectory() -> None:
    analysis = TrajectoryAnalyzer(_cfg()).analyze(_cruise(1, 0))
    assert analysis.track_id == 1
    assert analysis.segments is not None
    assert SegmentKind.STRAIGHT in [s.kind for s in analysis.segments]
    assert set(analysis.measures) == {"speed", "bias", "path", "x"}
    assert np.all(analysis.measures["bias"][5:-5] == 1.0)
    speed = analysis.measures["speed"]
    assert abs(np.nanmedian(speed) - 50.0 * 0.0243) < 0.1 * 50.0 * 0.0243
    assert "speed" in analysis.jitter
    assert analysis.reversals == []
    assert 0.0 < analysis.noise < 1.0


def test_short_trajectory_uses_unsegmented_direction() -> None:
    analysis = TrajectoryAnalyzer(_cfg()).analyze(_cruise(2, 1, n=8))
    assert analysis.segments is None
    assert len(analysis.labels) == 8


def test_trajectory_without_frames() -> None:
    traj = _traj(3, np.full((20, 2), np.nan))
    analysis = TrajectoryAnalyzer(_cfg()).analyze(traj)
    assert analysis.segments == []
    assert analysis.labels.counts()[3] == 20
    for values in analysis.measures.values():
        assert np.all(np.isnan(values))


def test_region_masking_and_shadow_trim() -> None:
    cfg = _cfg(regions={"exclude": [[200.0, 0.0, 240.0, 100.0]]}, trim={"avoid_shadow": True})
    analysis = TrajectoryAnalyzer(cfg).analyze(_cruise(4, 3))
    assert analysis.masked > 0
    assert analysis.trimmed > 0
    assert len(analysis.measures["x"]) == 120 - analysis.trimmed
    x = analysis.measures["x"] / 0.0243
    assert not np.any((x > 201.0) & (x < 239.0))


def test_reversal_detected_on_back_and_forth() -> None:
    rng = np.random.default_rng(17)
    x = np.concatenate([2.0 * np.arange(60), 118.0 - 2.0 * np.arange(1, 31), 60.0 + 2.0 * np.arange(1, 41)])
    c = np.column_stack([x, np.zeros(len(x))]) + rng.normal(0.0, 0.3, size=(len(x), 2))
    traj = _traj(5, c)
    skel = np.array([[6.0, 0.0], [0.0, 0.0], [-6.0, 0.0]])
    traj.skeleton = [p + skel for p in traj.centroid]
    analysis = TrajectoryAnalyzer(_cfg()).analyze(traj)
    assert len(analysis.reversals) == 1
    event = analysis.reversals[0]
    assert abs(event.start - 59) <= 3
    assert abs(event.end - 89) <= 3
    assert abs(event.distance - 60.0) < 6.0


def test_batch_runs_all_and_collects_failures() -> None:
    trajectories = [_cruise(10 + k, k) for k in range(12)]
    runner = BatchRunner(_cfg(), workers=3)
    result = runner.run(trajectories + [None])  # type: ignore[list-item]
    assert len(result.analyses) == 12
    assert [a.track_id for a in result.analyses] == [10 + k for k in range(12)]
    assert not result.ok
    assert list(result.errors) == [-1]
    assert result.regression is not None
    assert result.regression.n == 12
    for a in result.analyses:
        assert math.isfinite(a.noise)


def test_trajectory_with_outlines_and_skeletons() -> None:
    traj = _cruise(6, 5, n=60)
    t = 2.0 * math.pi * np.arange(40) / 40
    ellipse = np.column_stack([6.0 * np.cos(t), 1.5 * np.sin(t)])
    spine = np.column_stack([np.linspace(6.0, -6.0, 11), np.zeros(11)])
    traj.skeleton = [c + spine for c in traj.centroid]
    traj.outline = [c + ellipse for c in traj.centroid]
    cfg = _cfg(measures=["speed", "outline_width", "kink", "posture_confusion"])
    analysis = TrajectoryAnalyzer(cfg).analyze(traj)
    width = analysis.measures["outline_width"] / 0.0243
    assert np.all(np.isfinite(width))
    assert np.all(width < 3.0 + 1e-6)
    assert np.allclose(analysis.measures["kink"], 0.0, atol=1e-4)
    assert not np.any(analysis.measures["posture_confusion"])


def test_records_are_timed_at_configured_rate() -> None:
    recs = [FrameRecord(frame=f, area=60, centroid=(2.0 * f, 0.0), bearing=(1.0, 0.0), extent=(12.0, 3.0)) for f in range(5, 40)]
    analyzer = TrajectoryAnalyzer(_cfg(timing={"frame_rate_hz": 10.0}))
    traj = analyzer.load_records(8, recs)
    assert traj.first_frame == 5
    assert abs(traj.times[0] - 0.5) < 1e-12
    assert abs(traj.times[1] - traj.times[0] - 0.1) < 1e-12
    table = np.arange(100, dtype=np.float64) * 0.04
    assert abs(analyzer.load_records(8, recs, table).times[0] - 0.2) < 1e-12
