import numpy as np

from trackanalysis.noise.body import avoid_shadow, compute_body_statistics
from trackanalysis.noise.estimator import DEFAULT_NOISE, NoiseFloorRegression, estimate_noise, position_noise
from trackanalysis.noise.statistics import robust_summary, summarize
from trackanalysis.utils.types import Trajectory


def _walk(centroid: np.ndarray, length: float = 10.0) -> Trajectory:
    n = len(centroid)
    return Trajectory(
        track_id=1,
        first_frame=0,
        last_frame=n - 1,
        area=np.full(n, 40, dtype=np.int64),
        centroid=centroid.astype(np.float64),
        bearing=np.tile([1.0, 0.0], (n, 1)),
        extent=np.tile([length, 2.0], (n, 1)),
        times=np.arange(n, dtype=np.float64) / 25.0,
    )


def test_constant_series_gives_default_noise() -> None:
    assert estimate_noise(np.full(50, 3.0)) == DEFAULT_NOISE
    assert estimate_noise([]) == DEFAULT_NOISE


def test_gaussian_noise_estimate() -> None:
    rng = np.random.default_rng(7)
    values = rng.normal(0.0, 0.7, size=5000)
    assert abs(estimate_noise(values) - 0.7) < 0.2 * 0.7


def test_noise_estimate_ignores_smooth_trend() -> None:
    rng = np.random.default_rng(11)
    t = np.arange(2000, dtype=np.float64)
    values = 0.05 * t + 3.0 * np.sin(t / 200.0) + rng.normal(0.0, 0.4, size=len(t))
    assert abs(estimate_noise(values) - 0.4) < 0.2 * 0.4


def test_robust_summary_rejects_outlier() -> None:
    rng = np.random.default_rng(5)
    values = np.append(rng.normal(10.0, 1.0, size=200), 1000.0)
    plain = summarize(values)
    robust = robust_summary(values)
    assert plain.maximum == 1000.0
    assert robust.rejected >= 1
    assert robust.maximum < 100.0
    assert abs(robust.average - 10.0) < 0.5


def test_position_noise_of_noisy_walk() -> None:
    rng = np.random.default_rng(2)
    n = 400
    c = np.column_stack([2.0 * np.arange(n), np.zeros(n)]) + rng.normal(0.0, 0.5, size=(n, 2))
    noise = position_noise(_walk(c))
    assert noise.n > 0
    assert 0.1 < noise.average < 1.0


def test_noise_floor_regression() -> None:
    reg = NoiseFloorRegression()
    for area in range(50, 170, 10):
        reg.add(float(area), 0.01 * area)
    assert reg.n == 12
    predicted = reg.predict(100.0)
    assert predicted is not None
    assert abs(predicted - 1.0) < 1e-6
    assert abs(reg.floor(100.0, 0.2) - 1.0) < 1e-6
    assert reg.floor(100.0, 5.0) == 5.0


def test_noise_floor_needs_enough_trajectories() -> None:
    reg = NoiseFloorRegression()
    for area in range(50, 100, 10):
        reg.add(float(area), 0.01 * area)
    assert reg.predict(100.0) is None
    assert reg.floor(100.0, 0.2) == 0.2


def test_body_statistics_and_shadow_trim() -> None:
    n = 30
    c = np.column_stack([2.0 * np.arange(n), np.zeros(n)])
    traj = _walk(c, length=10.0)
    stats = compute_body_statistics(traj)
    assert stats.length.n == n
    assert abs(stats.length.average - 10.0) < 1e-9
    assert abs(stats.aspect.average - 0.2) < 1e-9

    trimmed = avoid_shadow(traj, stats)
    assert trimmed == 6
    assert traj.first_frame == 6
    assert traj.n_frames == n - 6
    assert traj.centroid[0, 0] == 12.0


def test_body_statistics_without_frames() -> None:
    traj = _walk(np.full((12, 2), np.nan))
    stats = compute_body_statistics(traj)
    assert stats.length.n == 0
    assert avoid_shadow(traj, stats) == 0
