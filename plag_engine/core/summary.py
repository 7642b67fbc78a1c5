"""Aggregate statistics over collections of analyses."""

from collections import defaultdict
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from .types import IndividualAnalysis, PairwiseAnalysis


def round_half_away(value: float, precision: int) -> float:
    """Round to precision decimal places, ties away from zero (0.125 -> 0.13, -2.5 -> -3.0)."""
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class AggregateValues(BaseModel):
    """Count, mean, median, min and max of a set of numbers."""

    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0

    @classmethod
    def compute(cls, values: Sequence[float]) -> 'AggregateValues':
        """Aggregate the values. An empty input gives all zeros."""
        if len(values) == 0:
            return cls()

        array = np.asarray(values, dtype=float)
        return cls(
            count=len(array),
            mean=float(np.mean(array)),
            median=float(np.median(array)),
            min=float(np.min(array)),
            max=float(np.max(array)),
        )

    def round_with_precision(self, precision: int):
        self.mean = round_half_away(self.mean, precision)
        self.median = round_half_away(self.median, precision)
        self.min = round_half_away(self.min, precision)
        self.max = round_half_away(self.max, precision)


class AnalysisSummary(BaseModel):
    """Completion status shared by every summary."""

    complete: bool = True
    complete_count: int = 0
    pending_count: int = 0
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None

    def _fill_status(self, timestamps: List[datetime], pending_count: int):
        self.complete = pending_count == 0
        self.complete_count = len(timestamps)
        self.pending_count = pending_count
        if timestamps:
            self.first_timestamp = min(timestamps)
            self.last_timestamp = max(timestamps)


class PairwiseAnalysisSummary(AnalysisSummary):
    aggregate_mean_similarities: Dict[str, AggregateValues] = Field(
        default_factory=dict, description="Per-file aggregate of each pair's mean similarity")
    aggregate_total_mean_similarities: AggregateValues = Field(default_factory=AggregateValues)

    def round_with_precision(self, precision: int):
        for values in self.aggregate_mean_similarities.values():
            values.round_with_precision(precision)
        self.aggregate_total_mean_similarities.round_with_precision(precision)


class IndividualAnalysisSummary(AnalysisSummary):
    aggregate_score: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_lines_of_code: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_submission_time_delta: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_lines_of_code_delta: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_score_delta: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_lines_of_code_velocity: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_score_velocity: AggregateValues = Field(default_factory=AggregateValues)
    aggregate_lines_of_code_per_file: Dict[str, AggregateValues] = Field(default_factory=dict)

    def round_with_precision(self, precision: int):
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, AggregateValues):
                value.round_with_precision(precision)

        for values in self.aggregate_lines_of_code_per_file.values():
            values.round_with_precision(precision)


def new_pairwise_analysis_summary(
    items: Sequence[PairwiseAnalysis],
    pending_count: int
) -> PairwiseAnalysisSummary:
    """Summarize completed pairwise analyses, with pending_count still being computed."""
    per_file = defaultdict(list)
    totals = []
    for item in items:
        totals.append(item.total_mean_similarity)
        for filename, mean in item.mean_similarities.items():
            per_file[filename].append(mean)

    summary = PairwiseAnalysisSummary(
        aggregate_mean_similarities={
            filename: AggregateValues.compute(values) for filename, values in sorted(per_file.items())
        },
        aggregate_total_mean_similarities=AggregateValues.compute(totals),
    )
    summary._fill_status([item.analysis_timestamp for item in items], pending_count)
    return summary


def new_individual_analysis_summary(
    items: Sequence[IndividualAnalysis],
    pending_count: int
) -> IndividualAnalysisSummary:
    """Summarize completed individual analyses, with pending_count still being computed."""
    per_file = defaultdict(list)
    for item in items:
        for file_info in item.files:
            per_file[file_info.filename].append(file_info.lines_of_code)

    def aggregate(field: str) -> AggregateValues:
        return AggregateValues.compute([getattr(item, field) for item in items])

    summary = IndividualAnalysisSummary(
        aggregate_score=aggregate("score"),
        aggregate_lines_of_code=aggregate("lines_of_code"),
        aggregate_submission_time_delta=aggregate("submission_time_delta"),
        aggregate_lines_of_code_delta=aggregate("lines_of_code_delta"),
        aggregate_score_delta=aggregate("score_delta"),
        aggregate_lines_of_code_velocity=aggregate("lines_of_code_velocity"),
        aggregate_score_velocity=aggregate("score_velocity"),
        aggregate_lines_of_code_per_file={
            filename: AggregateValues.compute(values) for filename, values in sorted(per_file.items())
        },
    )
    summary._fill_status([item.analysis_timestamp for item in items], pending_count)
    return summary
