"""Analysis tasks: user-configured analysis runs and their typed options."""

import json
from typing import Any, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ConfigError
from .log import base_logger
from .summary import (
    IndividualAnalysisSummary,
    PairwiseAnalysisSummary,
    new_individual_analysis_summary,
    new_pairwise_analysis_summary,
)

logger = base_logger.getChild('tasks')

TASK_TYPE_PAIRWISE = "analysis-pairwise"
TASK_TYPE_INDIVIDUAL = "analysis-individual"
TASK_TYPES = [TASK_TYPE_PAIRWISE, TASK_TYPE_INDIVIDUAL]

T = TypeVar("T")


class TaskInfo(BaseModel):
    """A task as supplied by a user."""

    type: str
    name: str = ""
    disabled: bool = False
    options: Optional[Dict[str, Any]] = None

    def validate_task(self):
        """Check the task type and typed options. Fills in an empty options bag."""
        if self.options is None:
            self.options = {}

        if self.type not in TASK_TYPES:
            raise ConfigError(f"Unknown task type '{self.type}'. Known types: {', '.join(TASK_TYPES)}.",
                              task=self.name or None)

        AnalysisTaskOptions.from_task(self)

    def __str__(self) -> str:
        name = f" ({self.name})" if self.name else ""
        disabled = " (disabled) " if self.disabled else " "
        return f"Task{name}{disabled}of type '{self.type}'"


def get_task_option(task: TaskInfo, key: str, default: T) -> T:
    """
    Read one option of a task as the type of its default.

    A missing key gives the default. A present value that cannot be
    represented as the default's type raises ConfigError.
    """
    options = task.options or {}
    if key not in options:
        return default

    adapter = TypeAdapter(type(default))
    try:
        return adapter.validate_json(json.dumps(options[key]), strict=True)
    except (TypeError, ValueError, ValidationError) as ex:
        raise ConfigError(
            f"Task option '{key}' has the wrong type, expected {type(default).__name__}: {ex}",
            task=task.name or None,
        ) from ex


class AnalysisTaskOptions(BaseModel):
    """Typed view of an analysis task's options."""

    submission_ids: List[str] = Field(default_factory=list)
    wait: bool = True
    include_individual: bool = False

    @classmethod
    def from_task(cls, task: TaskInfo) -> 'AnalysisTaskOptions':
        return cls(
            submission_ids=[str(id) for id in get_task_option(task, "submission-ids", [])],
            wait=get_task_option(task, "wait", True),
            include_individual=get_task_option(task, "include-individual", False),
        )


class AnalysisTaskResult(BaseModel):
    pairwise: Optional[PairwiseAnalysisSummary] = None
    individual: Optional[IndividualAnalysisSummary] = None


def run_analysis_task(service, task: TaskInfo, requester: str = "") -> Optional[AnalysisTaskResult]:
    """
    Run one analysis task against a service.

    Individual tasks always run an individual analysis. Pairwise tasks also
    run one when the 'include-individual' option is set.

    Returns:
        Summaries of the analyses, or None if the task is disabled
    """
    if task.disabled:
        logger.info(f"Skipping {task}")
        return None

    task.validate_task()
    options = AnalysisTaskOptions.from_task(task)
    logger.info(f"Running {task} over {len(options.submission_ids)} submissions")

    result = AnalysisTaskResult()

    if task.type == TASK_TYPE_PAIRWISE:
        analyses, pending = service.pairwise_analysis(options.submission_ids, options.wait, requester)
        result.pairwise = new_pairwise_analysis_summary(analyses, pending)

    if task.type == TASK_TYPE_INDIVIDUAL or options.include_individual:
        analyses, pending = service.individual_analysis(options.submission_ids, options.wait, requester)
        result.individual = new_individual_analysis_summary(analyses, pending)

    return result
