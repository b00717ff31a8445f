from .segment import Segment, SegmentKind, index_to_segment, path_length, segment_kinds
from .segmenter import MIN_SEGMENTABLE_FRAMES, Segmenter, segment_path

__all__ = [
    "MIN_SEGMENTABLE_FRAMES",
    "Segment",
    "SegmentKind",
    "Segmenter",
    "index_to_segment",
    "path_length",
    "segment_kinds",
    "segment_path",
]
