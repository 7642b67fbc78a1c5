"""Computation of a single pairwise analysis, plus per-request template staging."""

import itertools
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .engines.base import SimilarityEngine
from .errors import ConfigError, FetchError
from .log import base_logger
from .options import AnalysisOptions
from .reconcile import compute_file_similarities
from .submissions import SubmissionSource
from .types import PairwiseAnalysis, PairwiseKey, SubmissionInfo

logger = base_logger.getChild('pairwise')


def enumerate_pairwise_keys(submission_ids: Sequence[str]) -> List[PairwiseKey]:
    """All unordered pairs of the distinct ids, canonicalized, in input order."""
    unique_ids = list(dict.fromkeys(submission_ids))

    keys = []
    seen = set()
    for id_a, id_b in itertools.combinations(unique_ids, 2):
        key = PairwiseKey.of(id_a, id_b)
        if key not in seen:
            seen.add(key)
            keys.append(key)

    return keys


class TemplateStager:
    """
    Stages each assignment's template files at most once per request.

    Thread-safe. Call close() once every computation of the request is done.
    """

    def __init__(self, source: SubmissionSource):
        self.source = source
        self._root = Path(tempfile.mkdtemp(prefix="plag-templates-"))
        self._dirs: Dict[Tuple[str, str], Path] = {}
        self._lock = threading.Lock()

    def get(self, course_id: str, assignment_id: str, options: Optional[AnalysisOptions]) -> Optional[Path]:
        if options is None or not options.has_templates():
            return None

        with self._lock:
            key = (course_id, assignment_id)
            if key not in self._dirs:
                dest_dir = self._root / f"{len(self._dirs)}"
                base_dir = self.source.get_template_base_dir(course_id, assignment_id)
                try:
                    relpaths = options.fetch_template_files(base_dir, dest_dir)
                except FetchError as ex:
                    ex.context.update({"course": course_id, "assignment": assignment_id})
                    raise
                logger.debug(f"Staged {len(relpaths)} template files for {course_id}/{assignment_id}")
                self._dirs[key] = dest_dir

            return self._dirs[key]

    def close(self):
        shutil.rmtree(self._root, ignore_errors=True)


def load_options(source: SubmissionSource, info: SubmissionInfo) -> Optional[AnalysisOptions]:
    """The validated analysis options of a submission's assignment (None if it has none)."""
    options = source.get_analysis_options(info.course_id, info.assignment_id)
    if options is None:
        return None

    try:
        options.validate_options()
    except ConfigError as ex:
        ex.context.update({"course": info.course_id, "assignment": info.assignment_id})
        raise

    return options


def compute_pairwise_analysis(
    key: PairwiseKey,
    source: SubmissionSource,
    engines: Sequence[SimilarityEngine],
    stager: TemplateStager
) -> Tuple[PairwiseAnalysis, SubmissionInfo]:
    """
    Run file reconciliation and every engine over one pair of submissions.

    Options and templates come from the assignment of the key's first member.

    Returns:
        The new analysis and the metadata of the key's first submission
    """
    info = source.get_info(key.first)
    options = load_options(source, info)
    template_dir = stager.get(info.course_id, info.assignment_id, options)

    paths = (str(source.get_submission_dir(key.first)), str(source.get_submission_dir(key.second)))
    result = compute_file_similarities(paths, engines, options, template_dir)

    if result.engine_failures:
        logger.warning(f"Engines failed on {len(result.engine_failures)} file(s) of {key}")

    analysis = PairwiseAnalysis.new(key, options, result.similarities, result.unmatched, result.skipped,
                                    result.engine_failures)
    return analysis, info
