"""Usage metrics recorded for every analysis that had to be computed."""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .log import base_logger
from .types import now

logger = base_logger.getChild('metrics')

METRIC_TYPE_CODE_ANALYSIS_TIME = "code-analysis-time"
ATTRIBUTE_KEY_ANALYSIS = "analysis"


class CourseMetric(BaseModel):
    """One usage/cost event attributed to a course, assignment and user."""

    timestamp: datetime = Field(default_factory=now)
    type: str = METRIC_TYPE_CODE_ANALYSIS_TIME
    course_id: str
    assignment_id: str = ""
    user_email: str = ""
    value: float = 0.0
    attributes: Dict[str, Any] = Field(default_factory=dict)


class MetricsRecorder(ABC):
    """Metrics collaborator. Recording is fire-and-forget."""

    @abstractmethod
    def record_course_metric(self, metric: CourseMetric):
        """Store one metric."""


class MemoryMetricsRecorder(MetricsRecorder):
    """Keeps metrics in memory; handy for tests and one-off CLI runs."""

    def __init__(self):
        self._metrics: List[CourseMetric] = []
        self._lock = threading.Lock()

    def record_course_metric(self, metric: CourseMetric):
        with self._lock:
            self._metrics.append(metric.model_copy(deep=True))

    def get_course_metrics(self, course_id: Optional[str] = None) -> List[CourseMetric]:
        with self._lock:
            return [
                metric.model_copy(deep=True) for metric in self._metrics
                if course_id is None or metric.course_id == course_id
            ]


class LoggingMetricsRecorder(MetricsRecorder):
    """Writes every metric to the log."""

    def record_course_metric(self, metric: CourseMetric):
        logger.info(
            f"Metric {metric.type}: course={metric.course_id} assignment={metric.assignment_id} "
            f"user={metric.user_email} value={metric.value:.2f} attributes={metric.attributes}"
        )


def safe_record(
    recorder: Optional[MetricsRecorder],
    kind: str,
    course_id: str,
    assignment_id: str,
    user_email: str,
    value: float
):
    """Record an analysis metric. A failing recorder is logged, never raised."""
    if recorder is None:
        return

    metric = CourseMetric(
        course_id=course_id,
        assignment_id=assignment_id,
        user_email=user_email,
        value=value,
        attributes={ATTRIBUTE_KEY_ANALYSIS: kind},
    )

    try:
        recorder.record_course_metric(metric)
    except Exception as ex:
        logger.error(f"Failed to record {kind} analysis metric for course '{course_id}': {ex}")
