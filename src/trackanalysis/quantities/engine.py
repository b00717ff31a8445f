from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from trackanalysis.direction.labels import DirectionLabels
from trackanalysis.direction.resolver import DirectionResolver
from trackanalysis.noise.estimator import estimate_noise
from trackanalysis.quantities.measures import Measure
from trackanalysis.quantities.path import cumulative_path
from trackanalysis.quantities.shape import body_curve, end_kink, midline_length, outline_width
from trackanalysis.quantities.speed import WindowMetric, windowed_angular_speed, windowed_metric
from trackanalysis.segmentation.segment import Segment
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuantitySettings:
    mm_per_pixel: float = 0.0243
    speed_window_s: float = 0.5
    normalize_speed: bool = False


class QuantityEngine:
    """Per-trajectory measure computation with a single cached result buffer.

    Only the most recently loaded measure is held; asking for another one
    recomputes into the buffer. Jitter estimates are kept per measure across
    reloads. All access goes through one lock per trajectory.
    """

    def __init__(
        self,
        traj: Trajectory,
        settings: QuantitySettings,
        noise: float = 1.0,
        body_length: float = math.nan,
        segments: Optional[Sequence[Segment]] = None,
        min_travel: float = 0.0,
        labels: Optional[DirectionLabels] = None,
        resolver: Optional[DirectionResolver] = None,
    ) -> None:
        self.traj = traj
        self.settings = settings
        self.segments = segments
        self.min_travel = float(min_travel)
        self.body_length = float(body_length)
        self.resolver = resolver if resolver is not None else DirectionResolver(traj, noise, body_length)
        self._labels = labels
        self._lock = threading.Lock()
        self._buffer = np.full(traj.n_frames, np.nan, dtype=np.float64)
        self._active: Optional[Measure] = None
        self._jitter: Dict[Measure, float] = {}

    @property
    def active(self) -> Optional[Measure]:
        return self._active

    @property
    def labels(self) -> DirectionLabels:
        if self._labels is None:
            self._labels = self.resolver.resolve(self.segments, self.min_travel)
        return self._labels

    def jitter(self, measure: Union[str, Measure]) -> Optional[float]:
        return self._jitter.get(Measure.parse(measure))

    def load(self, measure: Union[str, Measure], jitter: bool = False) -> np.ndarray:
        """Compute ``measure`` into the shared buffer (unless it is already there) and return it."""
        m = Measure.parse(measure)
        with self._lock:
            if self._active is not m:
                self._active = None
                self._buffer = self._compute(m)
                self._active = m
            if jitter and m not in self._jitter:
                self._jitter[m] = estimate_noise(self._buffer)
            return self._buffer

    def extract(self) -> np.ndarray:
        with self._lock:
            return self._buffer.copy()

    def unload(self) -> None:
        with self._lock:
            self._active = None
            self._buffer = np.full(self.traj.n_frames, np.nan, dtype=np.float64)

    def _compute(self, m: Measure) -> np.ndarray:
        values = self._raw(m)
        scale = self.settings.mm_per_pixel ** m.unit_power
        if m.is_velocity and self.settings.normalize_speed:
            scale = 1.0
        out = np.asarray(values, dtype=np.float64) * scale
        out[~self.traj.present] = np.nan
        logger.debug("Trajectory %d: loaded %s", self.traj.track_id, m.value)
        return out

    def _per_frame(self, fn: Callable[..., float], *channels: Optional[List[Optional[np.ndarray]]]) -> np.ndarray:
        n = self.traj.n_frames
        out = np.full(n, np.nan, dtype=np.float64)
        for i in np.flatnonzero(self.traj.present):
            args = [None if ch is None else ch[i] for ch in channels]
            out[i] = fn(*args)
        return out

    def _velocity_norm(self) -> float:
        window = self.settings.speed_window_s
        if self.settings.normalize_speed:
            if not (self.body_length > 0.0):
                return math.nan
            return 1.0 / (self.body_length * window)
        return 1.0 / window

    def _raw(self, m: Measure) -> np.ndarray:
        t = self.traj
        window = self.settings.speed_window_s
        present = t.present
        if m is Measure.TIME:
            return t.times.copy()
        if m is Measure.FRAME:
            return np.arange(t.first_frame, t.last_frame + 1, dtype=np.float64)
        if m is Measure.AREA:
            return t.area.astype(np.float64)
        if m is Measure.X:
            return t.centroid[:, 0].copy()
        if m is Measure.Y:
            return t.centroid[:, 1].copy()
        if m is Measure.THETA:
            return np.degrees(np.arctan2(t.bearing[:, 1], t.bearing[:, 0]))
        if m is Measure.LENGTH:
            return t.extent[:, 0].copy()
        if m is Measure.WIDTH:
            return t.extent[:, 1].copy()
        if m is Measure.ASPECT:
            length = t.extent[:, 0]
            with np.errstate(divide="ignore", invalid="ignore"):
                return np.where(length == 0.0, np.nan, t.extent[:, 1] / length)
        if m is Measure.MIDLINE:
            return self._per_frame(midline_length, t.skeleton)
        if m is Measure.SPEED:
            return windowed_metric(t.times, t.centroid, window, WindowMetric.DIST, present) * self._velocity_norm()
        if m is Measure.ANGULAR_SPEED:
            return windowed_angular_speed(t.times, t.bearing, window, present)
        if m in (Measure.VX, Measure.VY, Measure.CRAB):
            metric = {Measure.VX: WindowMetric.DISTX, Measure.VY: WindowMetric.DISTY, Measure.CRAB: WindowMetric.CRAB}[m]
            return windowed_metric(t.times, t.centroid, window, metric, present, t.bearing) * self._velocity_norm()
        if m is Measure.BIAS:
            return self.labels.values.copy()
        if m is Measure.DIRECTION_CHANGE:
            return self.resolver.direction_change(self.segments)
        if m is Measure.POSTURE_CONFUSION:
            return self.resolver.confusion.astype(np.float64)
        if m is Measure.PATH:
            return cumulative_path(t, self.labels, self.segments)
        if m is Measure.CURVE:
            return np.degrees(self._per_frame(body_curve, t.skeleton))
        if m is Measure.KINK:
            return np.degrees(self._per_frame(end_kink, t.skeleton))
        if m is Measure.OUTLINE_WIDTH:
            return self._per_frame(outline_width, t.outline, t.skeleton, t.skeleton_width)
        raise ValueError(f"Unsupported measure: {m}")
