from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy import stats

QUARTILE_TO_SD = 1.48260221850560186
HALFWIDTH_TO_SD = 0.74130110925280093
OUTLIER_P = 0.001
MIN_ROBUST_N = 5
ASYMMETRY_MIN_N = 13


def inv_normal_tail(p: float, mu: float = 0.0, sigma: float = 1.0) -> float:
    """Value x such that P(X > x) = p for X ~ N(mu, sigma^2)."""
    return float(mu + sigma * stats.norm.isf(p))


@dataclass(frozen=True)
class Summary:
    n: int
    average: float
    deviation: float
    minimum: float
    maximum: float
    median: float
    first_quartile: float
    last_quartile: float
    rejected: int = 0

    @staticmethod
    def empty() -> "Summary":
        return Summary(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


def _from_sorted(v: np.ndarray, rejected: int = 0) -> Summary:
    n = len(v)
    if n == 0:
        return Summary.empty()
    avg = float(np.mean(v))
    if n == 1:
        dev = 0.0
    else:
        dev = float(np.std(v, ddof=1))
    return Summary(
        n=n,
        average=avg,
        deviation=dev,
        minimum=float(v[0]),
        maximum=float(v[-1]),
        median=float(v[n // 2]),
        first_quartile=float(v[n // 4]),
        last_quartile=float(v[(3 * n) // 4]),
        rejected=rejected,
    )


def summarize(values: Sequence[float]) -> Summary:
    v = np.asarray(values, dtype=np.float64).reshape(-1)
    v = np.sort(v[~np.isnan(v)])
    return _from_sorted(v)


def robust_summary(values: Sequence[float], n_sd_cutoff: Optional[float] = None) -> Summary:
    """Summary after rejecting implausible outliers judged from the quartiles.

    With enough data the two halves of the distribution are checked for asymmetry
    and, if they differ, each side gets its own plausibility bound.
    """
    v = np.asarray(values, dtype=np.float64).reshape(-1)
    v = np.sort(v[~np.isnan(v)])
    base = _from_sorted(v)
    n = base.n
    if n < MIN_ROBUST_N:
        return base
    if base.median == base.first_quartile or base.median == base.last_quartile:
        return base

    cut = inv_normal_tail(OUTLIER_P / (n - 4)) if n_sd_cutoff is None else float(n_sd_cutoff)
    spread = (base.last_quartile - base.first_quartile) * HALFWIDTH_TO_SD
    lower_plausible = base.median - cut * spread
    upper_plausible = base.median + cut * spread

    if n >= ASYMMETRY_MIN_N:
        med_i = n // 2
        lower_dist = base.median - base.first_quartile
        upper_dist = base.last_quartile - base.median
        unlikely = False

        half = med_i
        f = int(inv_normal_tail(0.025, 0.5 * half, 0.5 * math.sqrt(half)))
        farther_i = med_i - f
        closer_i = med_i + f - half
        if 0 <= farther_i < n and base.median - v[farther_i] < upper_dist:
            unlikely = True
        if 0 <= closer_i < med_i and base.median - v[closer_i] > upper_dist:
            unlikely = True

        half = n - (med_i + 1)
        f = int(inv_normal_tail(0.025, 0.5 * half, 0.5 * math.sqrt(half)))
        farther_i = med_i + f
        closer_i = med_i - f + half
        if farther_i < n and v[farther_i] - base.median < lower_dist:
            unlikely = True
        if med_i < closer_i < n and v[closer_i] - base.median > lower_dist:
            unlikely = True

        if unlikely:
            lower_plausible = base.median - cut * lower_dist * QUARTILE_TO_SD
            upper_plausible = base.median + cut * upper_dist * QUARTILE_TO_SD

    if base.minimum >= lower_plausible and base.maximum <= upper_plausible:
        return base
    kept = v[(v >= lower_plausible) & (v <= upper_plausible)]
    if len(kept) == 0:
        return Summary(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, rejected=n)
    return _from_sorted(kept, rejected=n - len(kept))
