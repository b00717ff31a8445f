from .body import BodyStatistics, avoid_shadow, compute_body_statistics, find_first_beyond
from .estimator import NoiseFloorRegression, estimate_noise, position_noise
from .statistics import Summary, inv_normal_tail, robust_summary, summarize

__all__ = [
    "BodyStatistics",
    "NoiseFloorRegression",
    "Summary",
    "avoid_shadow",
    "compute_body_statistics",
    "estimate_noise",
    "find_first_beyond",
    "inv_normal_tail",
    "position_noise",
    "robust_summary",
    "summarize",
]
