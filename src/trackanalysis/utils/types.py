from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

PointXY = Tuple[float, float]


@dataclass(frozen=True)
class FrameRecord:
    frame: int
    area: int
    centroid: Optional[PointXY] = None
    bearing: Optional[PointXY] = None
    extent: Optional[Tuple[float, float]] = None
    skeleton: Optional[List[PointXY]] = None
    skeleton_width: Optional[List[float]] = None
    outline: Optional[List[PointXY]] = None


def _nan_rows(n: int, width: int = 2) -> np.ndarray:
    return np.full((n, width), np.nan, dtype=np.float64)


@dataclass
class Trajectory:
    """All per-frame measurements of one tracked object.

    Arrays are indexed by frame offset (``frame - first_frame``). A frame whose
    centroid row is NaN is absent: it was never observed or has been filtered
    out, and every derived quantity treats it as missing.
    """

    track_id: int
    first_frame: int
    last_frame: int
    area: np.ndarray
    centroid: np.ndarray
    bearing: np.ndarray
    extent: np.ndarray
    times: np.ndarray
    skeleton: Optional[List[Optional[np.ndarray]]] = None
    skeleton_width: Optional[List[Optional[np.ndarray]]] = None
    outline: Optional[List[Optional[np.ndarray]]] = None
    ignored_start: Optional[PointXY] = None

    def __post_init__(self) -> None:
        n = 1 + self.last_frame - self.first_frame
        if n < 0:
            raise ValueError(f"last_frame {self.last_frame} precedes first_frame {self.first_frame}")
        for name in ("area", "centroid", "bearing", "extent", "times"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"Trajectory {self.track_id}: {name} has {len(getattr(self, name))} rows, expected {n}")
        for name in ("skeleton", "skeleton_width", "outline"):
            seq = getattr(self, name)
            if seq is not None and len(seq) != n:
                raise ValueError(f"Trajectory {self.track_id}: {name} has {len(seq)} rows, expected {n}")

    @property
    def n_frames(self) -> int:
        return 1 + self.last_frame - self.first_frame

    @property
    def present(self) -> np.ndarray:
        return ~np.isnan(self.centroid[:, 0])

    def has_skeleton(self, i: int) -> bool:
        return self.skeleton is not None and self.skeleton[i] is not None and bool(self.present[i])

    def has_outline(self, i: int) -> bool:
        return self.outline is not None and self.outline[i] is not None and bool(self.present[i])

    def mark_absent(self, i: int) -> None:
        self.centroid[i] = np.nan
        self.bearing[i] = np.nan
        self.extent[i] = np.nan
        if self.skeleton is not None:
            self.skeleton[i] = None
        if self.skeleton_width is not None:
            self.skeleton_width[i] = None
        if self.outline is not None:
            self.outline[i] = None

    def trim(self, count: int) -> None:
        """Drop ``count`` leading frames."""
        count = max(0, min(int(count), self.n_frames))
        if count == 0:
            return
        self.first_frame += count
        self.area = self.area[count:]
        self.centroid = self.centroid[count:]
        self.bearing = self.bearing[count:]
        self.extent = self.extent[count:]
        self.times = self.times[count:]
        if self.skeleton is not None:
            self.skeleton = self.skeleton[count:]
        if self.skeleton_width is not None:
            self.skeleton_width = self.skeleton_width[count:]
        if self.outline is not None:
            self.outline = self.outline[count:]

    def reversed(self) -> "Trajectory":
        """Copy with the frame order reversed (same frame range and times)."""

        def _flip(seq: Optional[List[Optional[np.ndarray]]]) -> Optional[List[Optional[np.ndarray]]]:
            return None if seq is None else list(reversed(seq))

        return Trajectory(
            track_id=self.track_id,
            first_frame=self.first_frame,
            last_frame=self.last_frame,
            area=self.area[::-1].copy(),
            centroid=self.centroid[::-1].copy(),
            bearing=self.bearing[::-1].copy(),
            extent=self.extent[::-1].copy(),
            times=self.times.copy(),
            skeleton=_flip(self.skeleton),
            skeleton_width=_flip(self.skeleton_width),
            outline=_flip(self.outline),
        )

    @staticmethod
    def from_records(
        track_id: int,
        records: Sequence[FrameRecord],
        frame_times: Optional[Sequence[float]] = None,
        frame_rate_hz: float = 25.0,
    ) -> "Trajectory":
        """Build a trajectory from loader records; frame-index gaps become absent frames.

        ``frame_times`` is indexed by absolute frame number. Without it, times are
        ``frame / frame_rate_hz``.
        """
        if not records:
            raise ValueError(f"Trajectory {track_id} has no frame records")
        ordered = sorted(records, key=lambda r: r.frame)
        first = int(ordered[0].frame)
        last = int(ordered[-1].frame)
        n = 1 + last - first

        area = np.zeros(n, dtype=np.int64)
        centroid = _nan_rows(n)
        bearing = _nan_rows(n)
        extent = _nan_rows(n)
        has_skel = any(r.skeleton is not None for r in ordered)
        has_width = any(r.skeleton_width is not None for r in ordered)
        has_outline = any(r.outline is not None for r in ordered)
        skeleton: Optional[List[Optional[np.ndarray]]] = [None] * n if has_skel else None
        skeleton_width: Optional[List[Optional[np.ndarray]]] = [None] * n if has_width else None
        outline: Optional[List[Optional[np.ndarray]]] = [None] * n if has_outline else None

        for r in ordered:
            i = int(r.frame) - first
            area[i] = int(r.area)
            if r.centroid is not None:
                centroid[i] = (float(r.centroid[0]), float(r.centroid[1]))
            if r.bearing is not None:
                bearing[i] = (float(r.bearing[0]), float(r.bearing[1]))
            if r.extent is not None:
                extent[i] = (float(r.extent[0]), float(r.extent[1]))
            if skeleton is not None and r.skeleton is not None:
                skeleton[i] = np.asarray(r.skeleton, dtype=np.float64).reshape(-1, 2)
            if skeleton_width is not None and r.skeleton_width is not None:
                skeleton_width[i] = np.asarray(r.skeleton_width, dtype=np.float64).reshape(-1)
            if outline is not None and r.outline is not None:
                outline[i] = np.asarray(r.outline, dtype=np.float64).reshape(-1, 2)

        frames = np.arange(first, last + 1)
        if frame_times is not None:
            table = np.asarray(frame_times, dtype=np.float64)
            if last >= len(table):
                raise ValueError(f"Frame time table has {len(table)} entries; trajectory {track_id} needs frame {last}")
            times = table[frames].copy()
        else:
            if frame_rate_hz <= 0.0:
                raise ValueError(f"frame_rate_hz must be positive, got {frame_rate_hz}")
            times = frames.astype(np.float64) / float(frame_rate_hz)

        return Trajectory(
            track_id=int(track_id),
            first_frame=first,
            last_frame=last,
            area=area,
            centroid=centroid,
            bearing=bearing,
            extent=extent,
            times=times,
            skeleton=skeleton,
            skeleton_width=skeleton_width,
            outline=outline,
        )
