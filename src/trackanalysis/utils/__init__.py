from .config import load_yaml, parse_distance, section
from .logging import setup_logging
from .types import FrameRecord, PointXY, Trajectory

__all__ = [
    "FrameRecord",
    "PointXY",
    "Trajectory",
    "load_yaml",
    "parse_distance",
    "section",
    "setup_logging",
]
