"""Submission-content collaborator: where submissions live and what is known about them."""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .errors import ConfigError, FetchError
from .log import base_logger
from .options import AnalysisOptions
from .types import SubmissionInfo

logger = base_logger.getChild('submissions')

ID_SEPARATOR = "::"
FILES_DIRNAME = "files"
RESULT_FILENAME = "result.json"
OPTIONS_FILENAME = "analysis.json"


class SubmissionSource(ABC):
    """Everything the analysis engine needs to know about submissions and assignments."""

    @abstractmethod
    def get_info(self, submission_id: str) -> SubmissionInfo:
        """Metadata for one submission. Raises FetchError if it does not exist."""

    @abstractmethod
    def get_history(self, course_id: str, assignment_id: str, user: str) -> List[SubmissionInfo]:
        """All of a user's submissions for an assignment, oldest first."""

    @abstractmethod
    def get_submission_dir(self, submission_id: str) -> Path:
        """Materialized working tree of a submission. Treated as read only."""

    @abstractmethod
    def get_analysis_options(self, course_id: str, assignment_id: str) -> Optional[AnalysisOptions]:
        """The assignment's (unvalidated) analysis options, if it has any."""

    @abstractmethod
    def get_template_base_dir(self, course_id: str, assignment_id: str) -> Path:
        """Directory that relative template paths resolve against."""

    def get_previous(self, info: SubmissionInfo) -> Optional[SubmissionInfo]:
        """The author's submission for the same assignment immediately before this one."""
        previous = None
        for candidate in self.get_history(info.course_id, info.assignment_id, info.user):
            if candidate.id == info.id or candidate.timestamp >= info.timestamp:
                continue
            if previous is None or candidate.timestamp > previous.timestamp:
                previous = candidate
        return previous


class DirectorySubmissionSource(SubmissionSource):
    """
    Submissions stored on disk as:

        <root>/<course>/<assignment>/analysis.json        (optional options)
        <root>/<course>/<assignment>/<user>/<timestamp>/files/
        <root>/<course>/<assignment>/<user>/<timestamp>/result.json  (optional, {"score": ...})

    Submission ids are 'course::assignment::user::timestamp' with a unix timestamp.
    """

    def __init__(self, root):
        self.root = Path(root)

    def _split_id(self, submission_id: str) -> List[str]:
        parts = submission_id.split(ID_SEPARATOR)
        if len(parts) != 4 or not all(parts):
            raise FetchError(f"Malformed submission id '{submission_id}'.")
        return parts

    def _submission_root(self, submission_id: str) -> Path:
        return self.root.joinpath(*self._split_id(submission_id))

    def get_info(self, submission_id: str) -> SubmissionInfo:
        course_id, assignment_id, user, raw_timestamp = self._split_id(submission_id)
        submission_root = self._submission_root(submission_id)
        if not submission_root.is_dir():
            raise FetchError(f"Unknown submission '{submission_id}'.")

        try:
            timestamp = datetime.fromtimestamp(int(raw_timestamp), tz=timezone.utc)
        except (ValueError, OverflowError) as ex:
            raise FetchError(f"Submission id '{submission_id}' has a bad timestamp.") from ex

        score = 0.0
        result_path = submission_root / RESULT_FILENAME
        if result_path.exists():
            try:
                score = float(json.loads(result_path.read_text(encoding="utf-8")).get("score", 0.0))
            except (OSError, ValueError, TypeError, AttributeError) as ex:
                raise FetchError(f"Unable to read result of submission '{submission_id}': {ex}") from ex

        return SubmissionInfo(
            id=submission_id,
            course_id=course_id,
            assignment_id=assignment_id,
            user=user,
            timestamp=timestamp,
            score=score,
        )

    def get_history(self, course_id: str, assignment_id: str, user: str) -> List[SubmissionInfo]:
        user_dir = self.root / course_id / assignment_id / user
        if not user_dir.is_dir():
            return []

        history = []
        for child in user_dir.iterdir():
            if not child.is_dir() or not child.name.isdigit():
                continue
            history.append(self.get_info(ID_SEPARATOR.join([course_id, assignment_id, user, child.name])))

        return sorted(history, key=lambda info: info.timestamp)

    def get_submission_dir(self, submission_id: str) -> Path:
        path = self._submission_root(submission_id) / FILES_DIRNAME
        if not path.is_dir():
            raise FetchError(f"Submission '{submission_id}' has no files directory.")
        return path

    def get_analysis_options(self, course_id: str, assignment_id: str) -> Optional[AnalysisOptions]:
        path = self.root / course_id / assignment_id / OPTIONS_FILENAME
        if not path.exists():
            return None

        try:
            return AnalysisOptions.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as ex:
            raise ConfigError(f"Unable to load analysis options: {ex}",
                              course=course_id, assignment=assignment_id) from ex

    def get_template_base_dir(self, course_id: str, assignment_id: str) -> Path:
        return self.root / course_id / assignment_id
