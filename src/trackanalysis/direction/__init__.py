from .labels import BACKWARD, FORWARD, INVALID, STILL, DirectionLabels
from .posture import outline_perimeter, posture_confusion
from .resolver import DirectionResolver
from .reversals import REVERSAL_BODY_FRACTION, ReversalEvent, find_reversals

__all__ = [
    "BACKWARD",
    "FORWARD",
    "INVALID",
    "REVERSAL_BODY_FRACTION",
    "STILL",
    "DirectionLabels",
    "DirectionResolver",
    "ReversalEvent",
    "find_reversals",
    "outline_perimeter",
    "posture_confusion",
]
