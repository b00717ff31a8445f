from __future__ import annotations

import math

import numpy as np


def length2(v: np.ndarray) -> float:
    return float(v[0] * v[0] + v[1] * v[1])


def dot(u: np.ndarray, v: np.ndarray) -> float:
    return float(u[0] * v[0] + u[1] * v[1])


def cross(u: np.ndarray, v: np.ndarray) -> float:
    return float(u[0] * v[1] - u[1] * v[0])


def unit_dot(u: np.ndarray, v: np.ndarray) -> float:
    """Cosine of the angle between u and v; 0 when either is degenerate."""
    nu = length2(u)
    nv = length2(v)
    if nu <= 0.0 or nv <= 0.0 or math.isnan(nu) or math.isnan(nv):
        return 0.0
    c = dot(u, v) / math.sqrt(nu * nv)
    return float(max(-1.0, min(1.0, c)))


def polyline_length(points: np.ndarray) -> float:
    if points is None or len(points) < 2:
        return 0.0
    d = np.diff(np.asarray(points, dtype=np.float64), axis=0)
    return float(np.sum(np.hypot(d[:, 0], d[:, 1])))
