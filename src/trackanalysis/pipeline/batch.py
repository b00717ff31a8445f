from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from trackanalysis.noise.estimator import NoiseFloorRegression
from trackanalysis.pipeline.analyzer import PreparedTrajectory, TrajectoryAnalysis, TrajectoryAnalyzer
from trackanalysis.pipeline.config import AnalysisConfig
from trackanalysis.utils.types import Trajectory

logger = logging.getLogger("trackanalysis.pipeline.batch")

_In = TypeVar("_In")
_Out = TypeVar("_Out")


@dataclass
class BatchResult:
    analyses: List[TrajectoryAnalysis] = field(default_factory=list)
    errors: Dict[int, BaseException] = field(default_factory=dict)
    regression: Optional[NoiseFloorRegression] = None

    @property
    def ok(self) -> bool:
        return not self.errors


class BatchRunner:
    """Analyzes many trajectories on a fixed thread pool.

    Phase one measures body size and noise for every trajectory; the noise floor
    regression is then accumulated in input order before phase two runs.
    """

    def __init__(self, cfg: AnalysisConfig, workers: Optional[int] = None) -> None:
        self._cfg = cfg
        self._workers = int(workers) if workers is not None else cfg.workers
        if self._workers < 1:
            raise ValueError("workers must be at least 1")
        self._analyzer = TrajectoryAnalyzer(cfg)

    def run(self, trajectories: Sequence[Trajectory]) -> BatchResult:
        result = BatchResult()
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="trackanalysis") as pool:
            prepared = self._map(pool, self._analyzer.prepare, trajectories, "preparation", result)

            regression = NoiseFloorRegression()
            for p in prepared:
                if p.position_noise.n > 0:
                    regression.add(p.body.area.average, p.noise)
            result.regression = regression
            logger.debug("Noise floor regression built from %d trajectory(ies)", regression.n)

            def _finish(p: PreparedTrajectory) -> TrajectoryAnalysis:
                return self._analyzer.finish(p, regression)

            result.analyses = self._map(pool, _finish, prepared, "analysis", result)

        if result.errors:
            logger.error(f"{len(result.errors)} trajectory(ies) failed, but others may have succeeded.")
        return result

    @staticmethod
    def _map(
        pool: ThreadPoolExecutor,
        fn: Callable[[_In], _Out],
        items: Sequence[_In],
        phase: str,
        result: BatchResult,
    ) -> List[_Out]:
        futures: List[Tuple[int, Future]] = []
        for item in items:
            track_id = _track_id(item)
            futures.append((track_id, pool.submit(fn, item)))
        out: List[_Out] = []
        for track_id, fut in futures:
            try:
                out.append(fut.result())
            except Exception as e:
                logger.exception("Trajectory %d failed during %s", track_id, phase)
                result.errors[track_id] = e
        return out


def _track_id(item: object) -> int:
    if isinstance(item, PreparedTrajectory):
        return item.traj.track_id
    return int(getattr(item, "track_id", -1))


def analyze_batch(trajectories: Sequence[Trajectory], cfg: AnalysisConfig, workers: Optional[int] = None) -> BatchResult:
    return BatchRunner(cfg, workers).run(trajectories)
