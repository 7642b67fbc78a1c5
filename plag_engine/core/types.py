"""Shared data types and models for the analysis engine."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .options import AnalysisOptions

KEY_SEPARATOR = "||"


def now() -> datetime:
    """Current UTC time, the timestamp stamped on every analysis."""
    return datetime.now(timezone.utc)


class PairwiseKey(BaseModel):
    """An unordered pair of submission ids, stored sorted ascending."""

    first: str = Field(description="Lexicographically smaller submission id")
    second: str = Field(description="Lexicographically larger submission id")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_members(self) -> 'PairwiseKey':
        if self.first == self.second:
            raise ValueError(f"A pairwise key needs two distinct submissions, got '{self.first}' twice.")
        if self.first > self.second:
            raise ValueError("Pairwise key members must be sorted, use PairwiseKey.of().")
        return self

    @classmethod
    def of(cls, id_a: str, id_b: str) -> 'PairwiseKey':
        """Build the canonical key for two submission ids in any order."""
        first, second = sorted((id_a, id_b))
        return cls(first=first, second=second)

    def __str__(self) -> str:
        return f"{self.first}{KEY_SEPARATOR}{self.second}"


class FileSimilarity(BaseModel):
    """One engine's score for one matched file."""

    filename: str = Field(description="Relative path after pre-processing")
    original_filename: Optional[str] = Field(default=None, description="Relative path before pre-processing")
    tool: str = Field(description="Name of the engine that produced the score")
    version: str = Field(description="Version of the engine")
    score: float = Field(ge=0.0, le=1.0, description="Similarity score (0-1)")


class PairwiseAnalysis(BaseModel):
    """Cached plagiarism analysis of one pair of submissions."""

    options: Optional[AnalysisOptions] = Field(default=None, description="Options used for this analysis")
    analysis_timestamp: datetime = Field(default_factory=now)
    submission_ids: PairwiseKey
    similarities: Dict[str, List[FileSimilarity]] = Field(default_factory=dict)
    unmatched_files: List[Tuple[str, str]] = Field(default_factory=list)
    skipped_files: List[str] = Field(default_factory=list)
    mean_similarities: Dict[str, float] = Field(default_factory=dict)
    total_mean_similarity: float = 0.0
    engine_failures: Dict[str, List[str]] = Field(
        default_factory=dict, description="Engines that failed, per file. Such an analysis is never cached")

    @classmethod
    def new(
        cls,
        key: PairwiseKey,
        options: Optional[AnalysisOptions],
        similarities: Dict[str, List[FileSimilarity]],
        unmatched: Optional[List[Tuple[str, str]]] = None,
        skipped: Optional[List[str]] = None,
        engine_failures: Optional[Dict[str, List[str]]] = None
    ) -> 'PairwiseAnalysis':
        """Build an analysis and fill in its per-file and total means."""
        mean_similarities = {}
        for filename, sims in similarities.items():
            if sims:
                mean_similarities[filename] = float(np.mean([sim.score for sim in sims]))

        total = float(np.mean(list(mean_similarities.values()))) if mean_similarities else 0.0

        return cls(
            options=options,
            submission_ids=key,
            similarities=similarities,
            unmatched_files=unmatched or [],
            skipped_files=sorted(skipped or []),
            mean_similarities=mean_similarities,
            total_mean_similarity=total,
            engine_failures=engine_failures or {},
        )

    def is_complete(self) -> bool:
        """True if every engine scored every matched file."""
        return not self.engine_failures


class AnalysisFileInfo(BaseModel):
    """Size information for one file of a submission."""

    filename: str
    original_filename: Optional[str] = None
    lines_of_code: int = 0


class IndividualAnalysis(BaseModel):
    """Cached trend analysis of a single submission."""

    analysis_timestamp: datetime = Field(default_factory=now)
    options: Optional[AnalysisOptions] = None
    submission_id: str
    submission_start_time: datetime
    score: float = 0.0
    lines_of_code: int = 0
    files: List[AnalysisFileInfo] = Field(default_factory=list)
    skipped_files: List[str] = Field(default_factory=list)

    # Versus the author's previous submission for the same assignment.
    submission_time_delta: float = Field(default=0.0, description="Seconds since the previous submission")
    lines_of_code_delta: float = 0.0
    score_delta: float = 0.0
    lines_of_code_velocity: float = Field(default=0.0, description="Lines of code gained per minute")
    score_velocity: float = Field(default=0.0, description="Score gained per minute")

    def is_complete(self) -> bool:
        return True


class SubmissionInfo(BaseModel):
    """Metadata the submission store knows about one submission."""

    id: str
    course_id: str
    assignment_id: str
    user: str
    timestamp: datetime
    score: float = 0.0
