"""
Noise estimation for scalar series and for trajectory positions.

The series estimator assumes the true signal is locally polynomial: repeated
finite differencing cancels the signal while the variance of white noise grows by
the sum of squares of the matching Pascal-triangle row, so each differencing order
yields an independent estimate of the same noise magnitude.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from trackanalysis.geometry.fitting import FitKind, GeometricFit
from trackanalysis.noise.statistics import Summary, robust_summary
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)

CURVATURE_NOISE_FACTOR = 0.511663354
ERROR_CONVERGE_ITERATIONS = 12
ERROR_CONVERGE_FRACTION = math.sqrt(0.001)
DEFAULT_NOISE = 1.0
MIN_REGRESSION_POINTS = 10


def _pascal_row_sumsq(order: int) -> float:
    row = [1.0]
    for _ in range(order):
        row = [a + b for a, b in zip([0.0] + row, row + [0.0])]
    return float(sum(r * r for r in row))


def estimate_noise(series: Sequence[float]) -> float:
    values = np.asarray(series, dtype=np.float64).reshape(-1)
    values = values[~np.isnan(values)]
    if len(values) > 1:
        keep = np.empty(len(values), dtype=bool)
        keep[0] = True
        keep[1:] = values[1:] != values[:-1]
        values = values[keep]

    results: List[float] = []
    derivs = values
    order = 0
    while len(derivs) > 3 + order and order < ERROR_CONVERGE_ITERATIONS:
        order += 1
        derivs = np.diff(derivs)
        samples = derivs[:: order + 1]
        if len(samples) == 0:
            break
        result = math.sqrt(float(np.sum(samples * samples)) / (len(samples) * _pascal_row_sumsq(order)))
        if results:
            last = results[-1]
            converged = last <= 0.0 or abs(last - result) / last < ERROR_CONVERGE_FRACTION
            if converged:
                if result < last:
                    results.append(result)
                break
        results.append(result)
    return results[-1] if results else DEFAULT_NOISE


def second_difference_residuals(traj: Trajectory) -> np.ndarray:
    c = traj.centroid
    if len(c) < 3:
        return np.zeros(0, dtype=np.float64)
    d = c[2:] + c[:-2] - 2.0 * c[1:-1]
    mag = np.hypot(d[:, 0], d[:, 1])
    mag = mag[~np.isnan(mag)]
    return mag * CURVATURE_NOISE_FACTOR / math.sqrt(2.0)


def position_noise(traj: Trajectory) -> Summary:
    """Robust summary of per-frame position noise for one trajectory."""
    return robust_summary(second_difference_residuals(traj))


class NoiseFloorRegression:
    """Cross-trajectory line fit of position noise against body area.

    Short trajectories have too little data for a local noise estimate, so their
    noise is raised to the population trend once enough trajectories contributed.
    """

    def __init__(self) -> None:
        self._fit = GeometricFit(FitKind.LINE)

    @property
    def n(self) -> int:
        return self._fit.n

    def add(self, body_area: float, noise: float) -> None:
        if math.isnan(body_area) or math.isnan(noise):
            return
        self._fit.add(body_area, noise)
        self._fit.fit()

    def predict(self, body_area: float) -> Optional[float]:
        if self._fit.n <= MIN_REGRESSION_POINTS:
            return None
        p = self._fit.line
        if abs(p.a) < 1e-12:
            return None
        return -(p.c + p.b * body_area) / p.a

    def floor(self, body_area: float, noise: float) -> float:
        predicted = self.predict(body_area)
        if predicted is None or predicted <= noise:
            return noise
        logger.debug("Noise %.4f raised to regression floor %.4f (area %.1f)", noise, predicted, body_area)
        return float(predicted)
