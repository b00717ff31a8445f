"""
Posture confusion: frames where the body shape makes head and tail ambiguous.

Three detectors are tried in order of the data available. With both outlines and
skeletons, a fold shows up as the outline perimeter shrinking while the body gets
wider, or as the skeleton jumping between frames. With skeletons only, a fold is
an abrupt change in how far apart the skeleton ends are along the bearing. With
neither, a sharp bearing change is the only hint.
"""

from __future__ import annotations

import logging
import math

import cv2
import numpy as np

from trackanalysis.geometry.vectors import unit_dot
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)

PERIMETER_STRIDE = 5
THICK_FACTOR = 1.5
SKINNY_RATIO = 5.0
FOLDED_RATIO = 0.6
STRAIGHT_RATIO = 0.9
END_JUMP_FRACTION = 0.3
BEARING_AGREEMENT = 0.9


def outline_perimeter(outline: np.ndarray, stride: int = PERIMETER_STRIDE) -> float:
    """Closed perimeter through every ``stride``-th outline point."""
    # arcLength needs a contiguous (N, 1, 2) float32 array
    pts = np.ascontiguousarray(np.asarray(outline, dtype=np.float32).reshape(-1, 2)[::stride])
    if len(pts) < 2:
        return 0.0
    return float(cv2.arcLength(pts.reshape(-1, 1, 2), True))


def _mean_width(traj: Trajectory, present: np.ndarray) -> float:
    total = 0.0
    count = 0
    for i in np.flatnonzero(present):
        widths = None if traj.skeleton_width is None else traj.skeleton_width[i]
        if widths is not None and len(widths) > 2 and not np.isnan(widths[0]):
            total += float(np.sum(widths[1:-1]))
            count += len(widths) - 2
        else:
            length = traj.extent[i, 0]
            total += float(traj.area[i]) / max(1.0, 0.0 if math.isnan(length) else float(length))
            count += 1
    return total / max(1, count)


def _perimeter_confusion(traj: Trajectory, present: np.ndarray, width: float) -> np.ndarray:
    assert traj.skeleton is not None and traj.outline is not None
    n = traj.n_frames
    perimeter = np.zeros(n, dtype=np.float64)
    for i in np.flatnonzero(present):
        if traj.outline[i] is not None:
            perimeter[i] = outline_perimeter(traj.outline[i])
    measured = perimeter[perimeter > 0.0]
    mean_perimeter = float(np.mean(measured)) if len(measured) else 0.0
    sd = float(np.std(measured)) if len(measured) else 0.0
    thick = width * THICK_FACTOR
    short = min(2.0 * mean_perimeter / 3.0 + width, mean_perimeter - sd)

    confused = np.zeros(n, dtype=bool)
    for i in np.flatnonzero(present):
        skel = traj.skeleton[i]
        if skel is None or traj.outline[i] is None:
            confused[i] = True
            continue
        inner = len(skel) - 2
        widths = None if traj.skeleton_width is None else traj.skeleton_width[i]
        wide = 0 if widths is None else int(np.count_nonzero(widths[1:-1] > thick))
        if inner > 0 and 2 * wide >= inner and perimeter[i] < short:
            confused[i] = True
            continue
        prev = traj.skeleton[i - 1] if i > 0 and bool(present[i - 1]) else None
        if prev is None or len(prev) != len(skel) or inner <= 0:
            continue
        rel = skel - traj.centroid[i]
        prev_rel = prev - traj.centroid[i - 1]
        same = np.sum((rel[1:-1] - prev_rel[1:-1]) ** 2, axis=1)
        flipped = np.sum((rel[1:-1] - prev_rel[::-1][1:-1]) ** 2, axis=1)
        jumps = int(np.count_nonzero(np.minimum(same, flipped) > width * thick))
        confused[i] = 3 * jumps > inner
    return confused


def _endpoint_confusion(traj: Trajectory, present: np.ndarray) -> np.ndarray:
    assert traj.skeleton is not None
    n = traj.n_frames
    ratio = np.full(n, np.nan, dtype=np.float64)
    confused = np.zeros(n, dtype=bool)
    for i in np.flatnonzero(present):
        skel = traj.skeleton[i]
        if skel is None:
            confused[i] = True
            continue
        b = traj.bearing[i]
        norm = math.hypot(float(b[0]), float(b[1]))
        if not norm > 0.0:
            continue
        w = b / norm
        along = float(np.dot(skel[0] - skel[-1], w))
        length = float(traj.extent[i, 0])
        ratio[i] = along * along / max(1.0, length * length if math.isfinite(length) else 0.0)

    i = 1
    while i < n:
        a, b = ratio[i - 1], ratio[i]
        if (a < FOLDED_RATIO and b > STRAIGHT_RATIO) or (a > STRAIGHT_RATIO and b < FOLDED_RATIO):
            s0, s1 = traj.skeleton[i - 1], traj.skeleton[i]
            if s0 is not None and s1 is not None:
                scale = max(1.0, min(float(traj.extent[i - 1, 0]), float(traj.extent[i, 0])))
                d0 = float(np.hypot(*(s0[0] - s1[0]))) / scale
                dn = float(np.hypot(*(s0[-1] - s1[-1]))) / scale
                if max(d0, dn) > END_JUMP_FRACTION:
                    confused[i - 1] = True
                    confused[i] = True
                    i += 1
        i += 1
    return confused


def _bearing_confusion(traj: Trajectory, present: np.ndarray) -> np.ndarray:
    n = traj.n_frames
    confused = np.zeros(n, dtype=bool)
    has_bearing = present & ~np.isnan(traj.bearing[:, 0])
    i = 1
    while i < n:
        if has_bearing[i] and has_bearing[i - 1]:
            if abs(unit_dot(traj.bearing[i], traj.bearing[i - 1])) < BEARING_AGREEMENT:
                confused[i - 1] = True
                confused[i] = True
                i += 1
        i += 1
    return confused


def posture_confusion(traj: Trajectory) -> np.ndarray:
    """Boolean mask of frames with ambiguous posture; absent frames are never confused."""
    n = traj.n_frames
    if n == 0:
        return np.zeros(0, dtype=bool)
    present = traj.present
    width = _mean_width(traj, present)

    mean_perimeter = 0.0
    if traj.outline is not None:
        perims = [outline_perimeter(traj.outline[i]) for i in np.flatnonzero(present) if traj.outline[i] is not None]
        mean_perimeter = float(np.mean(perims)) if perims else 0.0

    if traj.skeleton is not None and traj.outline is not None and width > 0.0 and width * SKINNY_RATIO < mean_perimeter:
        confused = _perimeter_confusion(traj, present, width)
    elif traj.skeleton is not None:
        confused = _endpoint_confusion(traj, present)
    else:
        confused = _bearing_confusion(traj, present)

    # single-frame glitches are tolerated
    if n > 2:
        lone = confused[1:-1] & ~confused[:-2] & ~confused[2:]
        confused[1:-1] &= ~lone
    confused &= present
    logger.debug("Trajectory %d: %d posture-confused frame(s)", traj.track_id, int(np.count_nonzero(confused)))
    return confused
