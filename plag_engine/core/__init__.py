"""Core modules for submission analysis."""

from .config import Config
from .errors import (
    AnalysisError,
    CacheError,
    ConfigError,
    EngineError,
    FetchError,
    IncompleteAnalysisError,
)
from .options import AnalysisOptions, FileOperation, FileSpec, validate_options
from .types import (
    AnalysisFileInfo,
    FileSimilarity,
    IndividualAnalysis,
    PairwiseAnalysis,
    PairwiseKey,
    SubmissionInfo,
)
from .engines import SimilarityEngine, build_engine, build_engines
from .reconcile import compute_file_similarities
from .cache import AnalysisCache, RedisAnalysisCache, MemoryAnalysisCache
from .metrics import CourseMetric, LoggingMetricsRecorder, MemoryMetricsRecorder, MetricsRecorder
from .submissions import DirectorySubmissionSource, SubmissionSource
from .pairwise import enumerate_pairwise_keys
from .service import AnalysisService
from .summary import (
    AggregateValues,
    IndividualAnalysisSummary,
    PairwiseAnalysisSummary,
    new_individual_analysis_summary,
    new_pairwise_analysis_summary,
)
from .tasks import TaskInfo, get_task_option, run_analysis_task
from .report import AnalysisReport, ReportGenerator

__all__ = [
    "Config",
    "AnalysisError",
    "CacheError",
    "ConfigError",
    "EngineError",
    "FetchError",
    "IncompleteAnalysisError",
    "AnalysisOptions",
    "FileOperation",
    "FileSpec",
    "validate_options",
    "AnalysisFileInfo",
    "FileSimilarity",
    "IndividualAnalysis",
    "PairwiseAnalysis",
    "PairwiseKey",
    "SubmissionInfo",
    "SimilarityEngine",
    "build_engine",
    "build_engines",
    "compute_file_similarities",
    "AnalysisCache",
    "RedisAnalysisCache",
    "MemoryAnalysisCache",
    "CourseMetric",
    "LoggingMetricsRecorder",
    "MemoryMetricsRecorder",
    "MetricsRecorder",
    "DirectorySubmissionSource",
    "SubmissionSource",
    "enumerate_pairwise_keys",
    "AnalysisService",
    "AggregateValues",
    "IndividualAnalysisSummary",
    "PairwiseAnalysisSummary",
    "new_individual_analysis_summary",
    "new_pairwise_analysis_summary",
    "TaskInfo",
    "get_task_option",
    "run_analysis_task",
    "AnalysisReport",
    "ReportGenerator",
]
