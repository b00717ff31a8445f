"""
Windowed kinematics.

For every frame a window of ``window_s`` seconds is centred on its time. The
window ends are located at fractional frame positions and interpolated, and the
largest displacement between any pair of sub-window endpoints is then found with
a two-pointer search that walks both ends in toward the frame.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from trackanalysis.geometry.vectors import unit_dot


class WindowMetric(Enum):
    DIST = "dist"
    DISTX = "distx"
    DISTY = "disty"
    CRAB = "crab"
    ANGLE = "angle"


def seek(t: float, times: np.ndarray) -> float:
    """Fractional frame offset at time ``t``; NaN outside the recorded span."""
    n = len(times)
    if n < 2:
        return math.nan
    i = int(np.searchsorted(times, t, side="left"))
    if i < n and times[i] == t:
        return float(i)
    if i <= 0 or i >= n:
        return math.nan
    span = float(times[i] - times[i - 1])
    if span <= 0.0:
        return float(i - 1)
    return (i - 1) + (t - float(times[i - 1])) / span


def _score(metric: WindowMetric, u: np.ndarray, v: np.ndarray) -> float:
    if metric is WindowMetric.ANGLE:
        return 1.0 - 0.5 * unit_dot(u, v)
    return float(math.hypot(float(v[0] - u[0]), float(v[1] - u[1])))


def _interpolated_ends(
    i: int, times: np.ndarray, location: np.ndarray, valid: np.ndarray, window_s: float
) -> Optional[Tuple[int, np.ndarray, int, np.ndarray]]:
    a = seek(float(times[i]) - 0.5 * window_s, times)
    if math.isnan(a):
        return None
    j = int(math.floor(a))
    if j + 1 > i or not valid[j] or not valid[j + 1]:
        return None
    frac = a - j
    u = (1.0 - frac) * location[j] + frac * location[j + 1]

    b = seek(float(times[i]) + 0.5 * window_s, times)
    if math.isnan(b):
        return None
    k = int(math.ceil(b))
    if k - 1 < i or k >= len(location) or not valid[k] or not valid[k - 1]:
        return None
    frac = k - b
    v = (1.0 - frac) * location[k] + frac * location[k - 1]
    return j, u, k, v


def windowed_metric(
    times: np.ndarray,
    location: np.ndarray,
    window_s: float,
    metric: WindowMetric,
    present: np.ndarray,
    bearing: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Per-frame windowed displacement (or bearing change) before normalisation."""
    n = len(location)
    out = np.full(n, np.nan, dtype=np.float64)
    if window_s <= 0.0:
        return out
    valid = ~np.isnan(location[:, 0]) & present
    for i in range(n):
        if not valid[i]:
            continue
        ends = _interpolated_ends(i, times, location, valid, window_s)
        if ends is None:
            continue
        j, u, k, v = ends
        best = _score(metric, u, v)
        bu, bv = u, v
        j += 1
        k -= 1
        while j < k:
            if valid[j] and valid[k]:
                s = _score(metric, location[j], location[k])
                if s > best:
                    best = s
                    bu, bv = location[j], location[k]
            if i - j > k - i:
                j += 1
            else:
                k -= 1

        if metric is WindowMetric.DISTX:
            out[i] = float(bv[0] - bu[0])
        elif metric is WindowMetric.DISTY:
            out[i] = float(bv[1] - bu[1])
        elif metric is WindowMetric.CRAB:
            if bearing is None or np.isnan(bearing[i, 0]):
                continue
            d = bv - bu
            norm = math.hypot(float(bearing[i, 0]), float(bearing[i, 1]))
            if norm <= 0.0:
                continue
            w = bearing[i] / norm
            side = d - w * float(np.dot(d, w))
            out[i] = float(math.hypot(float(side[0]), float(side[1])))
        else:
            out[i] = best
    return out


def windowed_angular_speed(times: np.ndarray, bearing: np.ndarray, window_s: float, present: np.ndarray) -> np.ndarray:
    """Bearing turn rate in degrees per second."""
    q = windowed_metric(times, bearing, window_s, WindowMetric.ANGLE, present)
    with np.errstate(invalid="ignore"):
        rad = np.arccos(np.clip(2.0 * (1.0 - q), -1.0, 1.0))
    return np.degrees(rad) / window_s
