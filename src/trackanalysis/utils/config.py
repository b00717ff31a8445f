from __future__ import annotations

from typing import Any, Dict, Tuple

import yaml

DISTANCE_UNITS = ("px", "mm", "bl")


def load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a dict at root of YAML: {path}")
    return data


def section(d: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = d.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


def parse_distance(value: Any, key: str = "distance") -> Tuple[float, str]:
    """Split ``"2.5mm"``-style values into (number, unit); bare numbers are pixels."""
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number with an optional px/mm/bl suffix")
    if isinstance(value, (int, float)):
        number, unit = float(value), "px"
    else:
        number, unit = _split_distance(value, key)
    if not number >= 0.0:
        raise ValueError(f"{key} must be non-negative")
    return number, unit


def _split_distance(value: Any, key: str) -> Tuple[float, str]:
    text = str(value).strip().lower()
    unit = "px"
    for suffix in DISTANCE_UNITS:
        if text.endswith(suffix):
            unit = suffix
            text = text[: -len(suffix)].strip()
            break
    try:
        number = float(text)
    except ValueError as e:
        raise ValueError(f"{key}: cannot parse distance {value!r} (expected px, mm or bl)") from e
    return number, unit
