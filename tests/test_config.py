import logging
import math
from pathlib import Path

import pytest

from trackanalysis.pipeline.config import AnalysisConfig, TravelThreshold
from trackanalysis.quantities.measures import Measure
from trackanalysis.utils.config import load_yaml, parse_distance
from trackanalysis.utils.logging import setup_logging

ROOT = Path(__file__).resolve().parents[1]


def test_parse_distance_units() -> None:
    assert parse_distance(3) == (3.0, "px")
    assert parse_distance("2.5mm") == (2.5, "mm")
    assert parse_distance(" 0.5 bl ") == (0.5, "bl")
    assert parse_distance("4px") == (4.0, "px")
    with pytest.raises(ValueError):
        parse_distance("3furlongs", "direction.min_travel")
    with pytest.raises(ValueError, match="direction.min_travel"):
        parse_distance(-1.0, "direction.min_travel")
    with pytest.raises(ValueError):
        parse_distance(-2)
    with pytest.raises(ValueError):
        parse_distance(float("nan"))
    with pytest.raises(ValueError):
        parse_distance(True)


def test_travel_threshold_to_pixels() -> None:
    assert TravelThreshold(2.0, "px").to_pixels(0.5, 10.0) == 2.0
    assert TravelThreshold(2.0, "mm").to_pixels(0.5, 10.0) == 4.0
    assert TravelThreshold(0.25, "bl").to_pixels(0.5, 10.0) == 2.5
    assert TravelThreshold(0.25, "bl").to_pixels(0.5, math.nan) == 0.0


def test_defaults_from_empty_dict() -> None:
    cfg = AnalysisConfig.from_dict({})
    assert cfg.mm_per_pixel == 0.0243
    assert cfg.frame_rate_hz == 25.0
    assert cfg.speed_window_s == 0.5
    assert cfg.segment_path is True
    assert cfg.normalize_speed is False
    assert cfg.min_travel == TravelThreshold(0.0, "px")
    assert cfg.reversal_distance == TravelThreshold(0.25, "bl")
    assert not cfg.regions.active
    assert cfg.workers == 4
    assert Measure.SPEED in cfg.measures


def test_full_config() -> None:
    cfg = AnalysisConfig.from_dict(
        {
            "calibration": {"mm_per_pixel": 0.05},
            "timing": {"frame_rate_hz": 10, "speed_window_s": 1.0},
            "direction": {"min_travel": "0.5bl", "segment_path": False},
            "speed": {"normalize_by_body_length": True},
            "regions": {"include": [[0, 0, 100]], "exclude": ["0,0,10,10"]},
            "trim": {"avoid_shadow": True},
            "measures": ["speed", "path", "angular_speed"],
            "workers": 2,
        }
    )
    assert cfg.mm_per_pixel == 0.05
    assert cfg.min_travel == TravelThreshold(0.5, "bl")
    assert cfg.segment_path is False
    assert cfg.regions.active
    assert cfg.avoid_shadow is True
    assert cfg.measures == (Measure.SPEED, Measure.PATH, Measure.ANGULAR_SPEED)
    settings = cfg.quantity_settings
    assert settings.normalize_speed is True
    assert settings.speed_window_s == 1.0


@pytest.mark.parametrize(
    "data, key",
    [
        ({"calibration": {"mm_per_pixel": 0}}, "calibration.mm_per_pixel"),
        ({"timing": {"frame_rate_hz": -1}}, "timing.frame_rate_hz"),
        ({"timing": {"speed_window_s": 0}}, "timing.speed_window_s"),
        ({"direction": {"min_travel": "fast"}}, "direction.min_travel"),
        ({"direction": {"min_travel": -1}}, "direction.min_travel"),
        ({"direction": {"reversal_distance": "-0.5bl"}}, "direction.reversal_distance"),
        ({"workers": 0}, "workers"),
        ({"measures": ["speed", "nope"]}, "nope"),
        ({"calibration": [1, 2]}, "calibration"),
        ({"regions": {"exclude": [[1, 2]]}}, "Region"),
    ],
)
def test_invalid_config_names_key(data: dict, key: str) -> None:
    with pytest.raises(ValueError, match=key):
        AnalysisConfig.from_dict(data)


def test_shipped_yaml_loads() -> None:
    path = ROOT / "configs" / "analysis.yaml"
    assert isinstance(load_yaml(str(path)), dict)
    cfg = AnalysisConfig.from_yaml(str(path))
    assert cfg.segment_path is True
    assert Measure.DIRECTION_CHANGE in cfg.measures


def test_setup_logging_levels(tmp_path: Path) -> None:
    log_file = tmp_path / "analysis.log"
    pkg = setup_logging("WARNING", str(log_file), package_level="debug")
    try:
        assert pkg.name == "trackanalysis"
        assert pkg.level == logging.DEBUG
        assert logging.getLogger().level == logging.WARNING
        assert log_file.exists()
        with pytest.raises(ValueError):
            setup_logging("chatty")
    finally:
        root = logging.getLogger()
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        pkg.setLevel(logging.NOTSET)
