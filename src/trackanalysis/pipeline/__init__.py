from .analyzer import PreparedTrajectory, TrajectoryAnalysis, TrajectoryAnalyzer
from .batch import BatchResult, BatchRunner, analyze_batch
from .config import AnalysisConfig, TravelThreshold

__all__ = [
    "AnalysisConfig",
    "BatchResult",
    "BatchRunner",
    "PreparedTrajectory",
    "TrajectoryAnalysis",
    "TrajectoryAnalyzer",
    "TravelThreshold",
    "analyze_batch",
]
