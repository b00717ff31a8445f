"""
Body-shape measures from skeletons and outlines.

All angles are returned in radians; the engine converts them for output.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from trackanalysis.geometry.vectors import cross, polyline_length, unit_dot

MIN_CURVE_POINTS = 6
CURVE_SAMPLES = 5
ENDPOINT_ANGLE_FRACTION = 0.1
WIDTH_SKIP_FRACTION = 0.2
CHORD_FRACTIONS = (0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def midline_length(skeleton: Optional[np.ndarray]) -> float:
    if skeleton is None or len(skeleton) < 2:
        return math.nan
    return polyline_length(skeleton)


def body_curve(skeleton: Optional[np.ndarray]) -> float:
    """Mean turn angle between chords through evenly spaced skeleton samples."""
    if skeleton is None or len(skeleton) < MIN_CURVE_POINTS:
        return math.nan
    size = len(skeleton)
    step = (size - 1) / float(CURVE_SAMPLES)
    total = 0.0
    ii = 0.0
    while _round_half_up(ii + 2 * step) < size:
        i = _round_half_up(ii)
        j = _round_half_up(ii + step)
        k = _round_half_up(ii + 2 * step)
        total += math.acos(unit_dot(skeleton[j] - skeleton[i], skeleton[k] - skeleton[j]))
        ii += step
    return total / (CURVE_SAMPLES - 1)


def end_kink(skeleton: Optional[np.ndarray]) -> float:
    """Angle between an end chord and the body chord, at the more bent end."""
    if skeleton is None or len(skeleton) < 3:
        return math.nan
    size = len(skeleton)
    last = size - 1

    j = max(1, _round_half_up(size * 0.2))
    front = skeleton[0] - skeleton[j]
    j = max(1, _round_half_up(size * 0.33))
    body = skeleton[j] - skeleton[last]
    front_wiggle = 1.0 if not (np.any(front) and np.any(body)) else unit_dot(front, body)

    j = _round_half_up(size * 0.8)
    if j >= last:
        j = last - 1
    back = skeleton[last] - skeleton[j]
    j = _round_half_up(size * 0.67)
    if j >= last:
        j = last - 1
    body = skeleton[j] - skeleton[0]
    back_wiggle = 1.0 if not (np.any(back) and np.any(body)) else unit_dot(back, body)

    return math.acos(min(front_wiggle, back_wiggle))


def signed_area(points: np.ndarray) -> float:
    """Shoelace area; positive for counter-clockwise points in a y-up frame."""
    x = points[:, 0]
    y = points[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def outline_angles(points: np.ndarray, body_fraction: float = ENDPOINT_ANGLE_FRACTION) -> np.ndarray:
    """Signed sharpness at each outline point: 1 + cos of the angle to its neighbours, negative where concave.

    Either winding direction gives the same signs.
    """
    size = len(points)
    winding = 1.0 if signed_area(points) > 0.0 else -1.0
    steps = _round_half_up(0.5 * size * body_fraction)
    if steps * 2 >= size:
        steps = size // 2 - 1
    steps = max(1, steps)
    angles = np.zeros(size, dtype=np.float64)
    for j in range(size):
        u = points[(j - steps) % size] - points[j]
        w = points[(j + steps) % size] - points[j]
        f = unit_dot(w, u) + 1.0
        angles[j] = -f if cross(u, w) * winding > 0.0 else f
    return angles


def best_endpoints(angles: np.ndarray) -> Tuple[int, int]:
    """The sharpest outline point and the sharpest point well away from it."""
    size = len(angles)
    first = int(np.argmax(angles))
    idx = np.arange(size)
    sep = np.minimum(np.abs(idx - first), size - np.abs(idx - first)) * (2.0 / size)
    score = angles * sep - 2.0 * (1.0 - sep)
    return first, int(np.argmax(score))


def outline_width(
    outline: Optional[np.ndarray],
    skeleton: Optional[np.ndarray] = None,
    skeleton_width: Optional[np.ndarray] = None,
) -> float:
    """Mean body width, from skeleton widths when available, else from outline chords."""
    if skeleton is not None and skeleton_width is not None and len(skeleton) > 4 and not np.isnan(skeleton_width[0]):
        size = len(skeleton_width)
        skip = max(_round_half_up(size * WIDTH_SKIP_FRACTION), 2)
        if size - 2 * skip > 0:
            return float(np.mean(skeleton_width[skip : size - skip]))
    if outline is None or len(outline) < 4:
        return math.nan
    pts = np.asarray(outline, dtype=np.float64).reshape(-1, 2)
    size = len(pts)
    e0, e1 = best_endpoints(outline_angles(pts))
    total = 0.0
    for f in CHORD_FRACTIONS:
        i = _round_half_up(f * e0 + (1.0 - f) * e1) % size
        other = e1 + size if e0 > e1 else e1 - size
        j = _round_half_up(f * e0 + (1.0 - f) * other) % size
        total += math.hypot(float(pts[i, 0] - pts[j, 0]), float(pts[i, 1] - pts[j, 1]))
    return total / len(CHORD_FRACTIONS)
