"""Computation of a single individual (per-submission trend) analysis."""

import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from .files import count_lines_of_code
from .log import base_logger
from .options import AnalysisOptions
from .pairwise import TemplateStager, load_options
from .reconcile import is_template_file, prepare_tree
from .submissions import SubmissionSource
from .types import AnalysisFileInfo, IndividualAnalysis, SubmissionInfo

logger = base_logger.getChild('individual')

SECONDS_PER_MINUTE = 60.0


def measure_files(
    submission_dir,
    options: Optional[AnalysisOptions],
    template_dir: Optional[Path]
) -> Tuple[List[AnalysisFileInfo], List[str]]:
    """
    Count lines of code per file of a submission.

    Files are pre-processed like in a pairwise comparison; files that are
    filtered out or identical to a template are returned as skipped.
    """
    if options is None:
        options = AnalysisOptions()
        options.validate_options()

    files = []
    skipped = []

    with tempfile.TemporaryDirectory(prefix="plag-individual-") as scratch:
        scratch = Path(scratch)
        tree = prepare_tree(submission_dir, scratch / "submission")

        templates = None
        if template_dir is not None and Path(template_dir).is_dir():
            templates = prepare_tree(template_dir, scratch / "templates").root

        for relpath in tree.relpaths:
            path = tree.root / relpath
            if not options.match_relpath(relpath) or is_template_file(relpath, path, templates):
                skipped.append(relpath)
                continue

            files.append(AnalysisFileInfo(
                filename=relpath,
                original_filename=tree.original(relpath),
                lines_of_code=count_lines_of_code(path),
            ))

    return files, skipped


def velocity(delta: float, elapsed_seconds: float) -> float:
    """Change per minute. Zero when no time has passed."""
    if elapsed_seconds <= 0:
        return 0.0
    return delta / (elapsed_seconds / SECONDS_PER_MINUTE)


def compute_individual_analysis(
    submission_id: str,
    source: SubmissionSource,
    stager: TemplateStager
) -> Tuple[IndividualAnalysis, SubmissionInfo]:
    """
    Measure one submission and compare it with the author's previous submission.

    Returns:
        The new analysis and the submission's metadata
    """
    info = source.get_info(submission_id)
    options = load_options(source, info)
    template_dir = stager.get(info.course_id, info.assignment_id, options)

    files, skipped = measure_files(source.get_submission_dir(submission_id), options, template_dir)
    lines_of_code = sum(file_info.lines_of_code for file_info in files)

    analysis = IndividualAnalysis(
        options=options,
        submission_id=submission_id,
        submission_start_time=info.timestamp,
        score=info.score,
        lines_of_code=lines_of_code,
        files=files,
        skipped_files=sorted(skipped),
    )

    previous = source.get_previous(info)
    if previous is None:
        return analysis, info

    previous_files, _ = measure_files(source.get_submission_dir(previous.id), options, template_dir)
    previous_lines_of_code = sum(file_info.lines_of_code for file_info in previous_files)

    elapsed = (info.timestamp - previous.timestamp).total_seconds()
    analysis.submission_time_delta = elapsed
    analysis.lines_of_code_delta = float(lines_of_code - previous_lines_of_code)
    analysis.score_delta = info.score - previous.score
    analysis.lines_of_code_velocity = velocity(analysis.lines_of_code_delta, elapsed)
    analysis.score_velocity = velocity(analysis.score_delta, elapsed)

    logger.debug(f"Submission {submission_id} follows {previous.id} by {elapsed:.0f}s")
    return analysis, info
