from .engine import QuantityEngine, QuantitySettings
from .measures import Measure
from .path import cumulative_path
from .shape import body_curve, end_kink, midline_length, outline_width
from .speed import WindowMetric, seek, windowed_angular_speed, windowed_metric

__all__ = [
    "Measure",
    "QuantityEngine",
    "QuantitySettings",
    "WindowMetric",
    "body_curve",
    "cumulative_path",
    "end_kink",
    "midline_length",
    "outline_width",
    "seek",
    "windowed_angular_speed",
    "windowed_metric",
]
