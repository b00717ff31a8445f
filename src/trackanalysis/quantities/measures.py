from __future__ import annotations

from enum import Enum
from typing import Union


class Measure(Enum):
    TIME = "time"
    FRAME = "frame"
    AREA = "area"
    X = "x"
    Y = "y"
    THETA = "theta"
    LENGTH = "length"
    WIDTH = "width"
    ASPECT = "aspect"
    MIDLINE = "midline"
    SPEED = "speed"
    ANGULAR_SPEED = "angular_speed"
    VX = "vx"
    VY = "vy"
    CRAB = "crab"
    BIAS = "bias"
    DIRECTION_CHANGE = "direction_change"
    POSTURE_CONFUSION = "posture_confusion"
    PATH = "path"
    CURVE = "curve"
    KINK = "kink"
    OUTLINE_WIDTH = "outline_width"

    @property
    def unit_power(self) -> int:
        """Power of the pixel-to-mm scale applied to this measure."""
        return _UNIT_POWER.get(self, 0)

    @property
    def is_velocity(self) -> bool:
        return self in (Measure.SPEED, Measure.VX, Measure.VY, Measure.CRAB)

    @staticmethod
    def parse(name: Union[str, "Measure"]) -> "Measure":
        if isinstance(name, Measure):
            return name
        key = str(name).strip().lower()
        for m in Measure:
            if m.value == key:
                return m
        raise ValueError(f"Unknown measure: {name}")


_UNIT_POWER = {
    Measure.AREA: 2,
    Measure.X: 1,
    Measure.Y: 1,
    Measure.LENGTH: 1,
    Measure.WIDTH: 1,
    Measure.MIDLINE: 1,
    Measure.SPEED: 1,
    Measure.VX: 1,
    Measure.VY: 1,
    Measure.CRAB: 1,
    Measure.PATH: 1,
    Measure.OUTLINE_WIDTH: 1,
}
