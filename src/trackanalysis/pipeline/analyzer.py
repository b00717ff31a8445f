from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from trackanalysis.direction.labels import DirectionLabels
from trackanalysis.direction.resolver import DirectionResolver
from trackanalysis.direction.reversals import ReversalEvent, find_reversals
from trackanalysis.geometry.roi import mask_regions
from trackanalysis.noise.body import BodyStatistics, avoid_shadow, compute_body_statistics
from trackanalysis.noise.estimator import DEFAULT_NOISE, NoiseFloorRegression, position_noise
from trackanalysis.noise.statistics import Summary
from trackanalysis.pipeline.config import AnalysisConfig
from trackanalysis.quantities.engine import QuantityEngine
from trackanalysis.quantities.path import cumulative_path
from trackanalysis.segmentation.segment import Segment, segment_kinds
from trackanalysis.segmentation.segmenter import MIN_SEGMENTABLE_FRAMES, Segmenter
from trackanalysis.utils.types import FrameRecord, Trajectory

logger = logging.getLogger(__name__)


@dataclass
class PreparedTrajectory:
    traj: Trajectory
    body: BodyStatistics
    position_noise: Summary
    masked: int = 0
    trimmed: int = 0

    @property
    def noise(self) -> float:
        avg = self.position_noise.average
        if self.position_noise.n == 0 or not (avg > 0.0 and math.isfinite(avg)):
            return DEFAULT_NOISE
        return float(avg)


@dataclass
class TrajectoryAnalysis:
    track_id: int
    noise: float
    position_noise: Summary
    body: BodyStatistics
    segments: Optional[List[Segment]]
    labels: DirectionLabels
    measures: Dict[str, np.ndarray] = field(default_factory=dict)
    jitter: Dict[str, float] = field(default_factory=dict)
    reversals: List[ReversalEvent] = field(default_factory=list)
    masked: int = 0
    trimmed: int = 0


class TrajectoryAnalyzer:
    """Runs the per-trajectory analysis in two phases.

    ``prepare`` masks regions, trims the shadowed start and measures body size and
    position noise. ``finish`` applies the cross-trajectory noise floor, segments
    the path, resolves direction and computes the configured measures.
    """

    def __init__(self, cfg: AnalysisConfig) -> None:
        self._cfg = cfg

    def load_records(
        self, track_id: int, records: Sequence[FrameRecord], frame_times: Optional[Sequence[float]] = None
    ) -> Trajectory:
        """Build a trajectory from loader records; without a frame time table frames are timed at ``timing.frame_rate_hz``."""
        return Trajectory.from_records(track_id, records, frame_times, self._cfg.frame_rate_hz)

    def prepare(self, traj: Trajectory) -> PreparedTrajectory:
        masked = mask_regions(traj, self._cfg.regions)
        body = compute_body_statistics(traj)
        trimmed = 0
        if self._cfg.avoid_shadow:
            trimmed = avoid_shadow(traj, body)
            if trimmed:
                body = compute_body_statistics(traj)
        noise = position_noise(traj)
        logger.debug(
            "Trajectory %d: %d frame(s), noise %.4f, body length %.2f",
            traj.track_id,
            traj.n_frames,
            noise.average,
            body.length.average,
        )
        return PreparedTrajectory(traj=traj, body=body, position_noise=noise, masked=masked, trimmed=trimmed)

    def finish(self, prepared: PreparedTrajectory, regression: Optional[NoiseFloorRegression] = None) -> TrajectoryAnalysis:
        cfg = self._cfg
        traj = prepared.traj
        body = prepared.body
        noise = prepared.noise
        if regression is not None:
            noise = regression.floor(body.area.average, noise)
        body_length = body.length.average

        segments: Optional[List[Segment]] = None
        if cfg.segment_path:
            if traj.n_frames >= MIN_SEGMENTABLE_FRAMES:
                segments = Segmenter(traj.centroid, noise).segment()
                logger.debug("Trajectory %d: %d segment(s) %s", traj.track_id, len(segments or []), segment_kinds(segments or []))
            else:
                logger.warning(
                    "Trajectory %d has %d frame(s); too short to segment, using unsegmented direction",
                    traj.track_id,
                    traj.n_frames,
                )

        min_travel = cfg.min_travel.to_pixels(cfg.mm_per_pixel, body_length)
        resolver = DirectionResolver(traj, noise, body_length, prepared.position_noise.last_quartile)
        labels = resolver.resolve(segments, min_travel)
        engine = QuantityEngine(
            traj,
            cfg.quantity_settings,
            noise=noise,
            body_length=body_length,
            segments=segments,
            min_travel=min_travel,
            labels=labels,
            resolver=resolver,
        )

        measures: Dict[str, np.ndarray] = {}
        jitter: Dict[str, float] = {}
        for m in cfg.measures:
            measures[m.value] = engine.load(m, jitter=True).copy()
            value = engine.jitter(m)
            if value is not None:
                jitter[m.value] = value
        engine.unload()

        path = cumulative_path(traj, labels, segments)
        path[~traj.present] = np.nan
        threshold = cfg.reversal_distance.to_pixels(cfg.mm_per_pixel, body_length)
        reversals = find_reversals(path, traj.times, threshold)

        return TrajectoryAnalysis(
            track_id=traj.track_id,
            noise=noise,
            position_noise=prepared.position_noise,
            body=body,
            segments=segments,
            labels=labels,
            measures=measures,
            jitter=jitter,
            reversals=reversals,
            masked=prepared.masked,
            trimmed=prepared.trimmed,
        )

    def analyze(self, traj: Trajectory, regression: Optional[NoiseFloorRegression] = None) -> TrajectoryAnalysis:
        return self.finish(self.prepare(traj), regression)
