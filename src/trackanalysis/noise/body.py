from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from trackanalysis.noise.statistics import Summary, summarize
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BodyStatistics:
    length: Summary
    width: Summary
    area: Summary
    aspect: Summary

    @staticmethod
    def empty() -> "BodyStatistics":
        e = Summary.empty()
        return BodyStatistics(e, e, e, e)


def compute_body_statistics(traj: Trajectory) -> BodyStatistics:
    """Length, width, area and aspect summaries over the present frames."""
    present = traj.present
    if not np.any(present):
        return BodyStatistics.empty()
    ext = traj.extent[present]
    lengths = ext[:, 0]
    widths = ext[:, 1]
    with np.errstate(divide="ignore", invalid="ignore"):
        aspect = np.where(lengths * lengths < 1e-12, 0.0, widths / lengths)
    aspect = np.where(np.isnan(lengths), np.nan, aspect)
    return BodyStatistics(
        length=summarize(lengths),
        width=summarize(widths),
        area=summarize(traj.area[present].astype(np.float64)),
        aspect=summarize(aspect),
    )


def find_first_beyond(traj: Trajectory, first_index: int, distance_limit: float) -> int:
    """Offset of the first present frame farther than ``distance_limit`` from ``first_index``.

    Returns ``n_frames`` when no frame gets that far.
    """
    if distance_limit < 0.0:
        return 0
    present = traj.present
    n = traj.n_frames
    i0 = max(0, int(first_index))
    while i0 < n and not present[i0]:
        i0 += 1
    if i0 >= n:
        return n
    d = traj.centroid[i0:] - traj.centroid[i0]
    d2 = d[:, 0] ** 2 + d[:, 1] ** 2
    beyond = np.flatnonzero(np.nan_to_num(d2, nan=-1.0) > distance_limit * distance_limit)
    return int(i0 + beyond[0]) if len(beyond) else n


def avoid_shadow(traj: Trajectory, stats: BodyStatistics) -> int:
    """Drop the leading frames that still overlap the starting footprint.

    The distance to clear is one body length, reduced by however far the object
    already travelled during any ignored start recorded by the loader.
    """
    if traj.n_frames == 0 or stats.length.n == 0:
        return 0
    present = np.flatnonzero(traj.present)
    travelled = 0.0
    if traj.ignored_start is not None and len(present):
        c = traj.centroid[present[0]]
        travelled = float(np.hypot(c[0] - traj.ignored_start[0], c[1] - traj.ignored_start[1]))
    distance_to_trim = stats.length.average - travelled
    if distance_to_trim <= 0.0:
        return 0
    count = find_first_beyond(traj, 0, distance_to_trim)
    traj.trim(count)
    logger.debug("Trajectory %d: trimmed %d shadowed frame(s)", traj.track_id, count)
    return count
