from .fitting import ArcParams, FitKind, GeometricFit, LineParams, SpotParams
from .roi import CircleRegion, RectangleRegion, Region, RegionFilter, includes, mask_regions, parse_region

__all__ = [
    "ArcParams",
    "CircleRegion",
    "FitKind",
    "GeometricFit",
    "LineParams",
    "RectangleRegion",
    "Region",
    "RegionFilter",
    "SpotParams",
    "includes",
    "mask_regions",
    "parse_region",
]
