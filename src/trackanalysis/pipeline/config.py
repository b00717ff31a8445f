from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from trackanalysis.direction.reversals import REVERSAL_BODY_FRACTION
from trackanalysis.geometry.roi import RegionFilter
from trackanalysis.quantities.engine import QuantitySettings
from trackanalysis.quantities.measures import Measure
from trackanalysis.utils.config import load_yaml, parse_distance, section

DEFAULT_MEASURES = ("speed", "bias", "path")


@dataclass(frozen=True)
class TravelThreshold:
    value: float
    unit: str = "px"

    def to_pixels(self, mm_per_pixel: float, body_length: float) -> float:
        if self.unit == "mm":
            return self.value / mm_per_pixel
        if self.unit == "bl":
            if not (body_length > 0.0 and math.isfinite(body_length)):
                return 0.0
            return self.value * body_length
        return self.value

    @staticmethod
    def parse(value: Any, key: str) -> "TravelThreshold":
        number, unit = parse_distance(value, key)
        return TravelThreshold(number, unit)


@dataclass(frozen=True)
class AnalysisConfig:
    mm_per_pixel: float
    frame_rate_hz: float
    speed_window_s: float
    min_travel: TravelThreshold
    reversal_distance: TravelThreshold
    segment_path: bool
    normalize_speed: bool
    regions: RegionFilter
    avoid_shadow: bool
    measures: Tuple[Measure, ...]
    workers: int

    @property
    def quantity_settings(self) -> QuantitySettings:
        return QuantitySettings(
            mm_per_pixel=self.mm_per_pixel,
            speed_window_s=self.speed_window_s,
            normalize_speed=self.normalize_speed,
        )

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "AnalysisConfig":
        calibration = section(d, "calibration")
        timing = section(d, "timing")
        direction = section(d, "direction")
        speed = section(d, "speed")
        regions = section(d, "regions")
        trim = section(d, "trim")

        mm_per_pixel = float(calibration.get("mm_per_pixel", 0.0243))
        if mm_per_pixel <= 0.0:
            raise ValueError("calibration.mm_per_pixel must be positive")
        frame_rate_hz = float(timing.get("frame_rate_hz", 25.0))
        if frame_rate_hz <= 0.0:
            raise ValueError("timing.frame_rate_hz must be positive")
        speed_window_s = float(timing.get("speed_window_s", 0.5))
        if speed_window_s <= 0.0:
            raise ValueError("timing.speed_window_s must be positive")
        workers = int(d.get("workers", 4))
        if workers < 1:
            raise ValueError("workers must be at least 1")

        include = regions.get("include", []) or []
        exclude = regions.get("exclude", []) or []
        if not isinstance(include, list) or not isinstance(exclude, list):
            raise ValueError("regions.include and regions.exclude must be lists")

        names = d.get("measures", list(DEFAULT_MEASURES)) or []
        if not isinstance(names, list):
            raise ValueError("measures must be a list of measure names")

        return AnalysisConfig(
            mm_per_pixel=mm_per_pixel,
            frame_rate_hz=frame_rate_hz,
            speed_window_s=speed_window_s,
            min_travel=TravelThreshold.parse(direction.get("min_travel", 0.0), "direction.min_travel"),
            reversal_distance=TravelThreshold.parse(
                direction.get("reversal_distance", f"{REVERSAL_BODY_FRACTION}bl"), "direction.reversal_distance"
            ),
            segment_path=bool(direction.get("segment_path", True)),
            normalize_speed=bool(speed.get("normalize_by_body_length", False)),
            regions=RegionFilter.from_lists(include, exclude),
            avoid_shadow=bool(trim.get("avoid_shadow", False)),
            measures=tuple(Measure.parse(n) for n in names),
            workers=workers,
        )

    @staticmethod
    def from_yaml(path: str) -> "AnalysisConfig":
        return AnalysisConfig.from_dict(load_yaml(path))
