from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple, Union

import numpy as np

from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CircleRegion:
    x: float
    y: float
    radius: float


@dataclass(frozen=True)
class RectangleRegion:
    x0: float
    y0: float
    x1: float
    y1: float


Region = Union[CircleRegion, RectangleRegion]


def includes(region: Region, x: float, y: float) -> bool:
    if isinstance(region, CircleRegion):
        dx = x - region.x
        dy = y - region.y
        return dx * dx + dy * dy <= region.radius * region.radius
    if isinstance(region, RectangleRegion):
        return region.x0 <= x <= region.x1 and region.y0 <= y <= region.y1
    raise TypeError(f"Unknown region type: {type(region).__name__}")


def parse_region(raw: Any) -> Region:
    """Parse ``"x,y,r"`` / ``[x, y, r]`` as a circle and ``"x0,y0,x1,y1"`` as a rectangle."""
    if isinstance(raw, str):
        parts: Sequence[Any] = [p for p in raw.split(",") if p.strip()]
    elif isinstance(raw, (list, tuple)):
        parts = raw
    else:
        raise ValueError(f"Region must be a string or list, got {type(raw).__name__}")
    try:
        values = [float(p) for p in parts]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Region has non-numeric values: {raw!r}") from e
    if len(values) == 3:
        if values[2] < 0.0:
            raise ValueError(f"Circle region radius must be non-negative: {raw!r}")
        return CircleRegion(values[0], values[1], values[2])
    if len(values) == 4:
        x0, y0, x1, y1 = values
        return RectangleRegion(min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))
    raise ValueError(f"Region needs 3 (circle) or 4 (rectangle) numbers, got {len(values)}: {raw!r}")


@dataclass(frozen=True)
class RegionFilter:
    include: Tuple[Region, ...] = ()
    exclude: Tuple[Region, ...] = ()

    @property
    def active(self) -> bool:
        return bool(self.include) or bool(self.exclude)

    def allows(self, x: float, y: float) -> bool:
        if math.isnan(x) or math.isnan(y):
            return False
        for r in self.include:
            if not includes(r, x, y):
                return False
        for r in self.exclude:
            if includes(r, x, y):
                return False
        return True

    @staticmethod
    def from_lists(include: Sequence[Any], exclude: Sequence[Any]) -> "RegionFilter":
        return RegionFilter(
            include=tuple(parse_region(s) for s in include),
            exclude=tuple(parse_region(s) for s in exclude),
        )


def mask_regions(traj: Trajectory, regions: RegionFilter) -> int:
    """Mark frames whose centroid falls outside the allowed regions as absent."""
    if not regions.active:
        return 0
    masked: List[int] = []
    present = traj.present
    for i in np.flatnonzero(present):
        x, y = traj.centroid[i]
        if not regions.allows(float(x), float(y)):
            masked.append(int(i))
    for i in masked:
        traj.mark_absent(i)
    if masked:
        logger.debug("Trajectory %d: %d frame(s) masked by regions", traj.track_id, len(masked))
    return len(masked)
