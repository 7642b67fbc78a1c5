"""Command-line interface for plag-engine."""

import json
import sys
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import click

from ..core import (
    AnalysisError,
    AnalysisReport,
    AnalysisService,
    Config,
    DirectorySubmissionSource,
    IncompleteAnalysisError,
    LoggingMetricsRecorder,
    MemoryAnalysisCache,
    RedisAnalysisCache,
    ReportGenerator,
    TaskInfo,
    build_engines,
    enumerate_pairwise_keys,
    new_individual_analysis_summary,
    new_pairwise_analysis_summary,
    run_analysis_task,
)
from ..core.engines import ENGINE_NAMES
from ..core.report import REPORT_FORMATS
from .display import create_console, display_individual_summary, display_pairwise_summary, display_report


# Configure logging
def setup_logging(verbose: bool):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_cache(config: Config):
    return RedisAnalysisCache(config.redis_url, lock_expire=config.claim_expire)


def build_service(root: Path, engines: Tuple[str, ...], redis_url: Optional[str], no_cache: bool) -> AnalysisService:
    """Wire a service over a submissions directory from CLI options."""
    config = Config()
    if engines:
        config.engines = list(engines)
    if redis_url:
        config.redis_url = redis_url

    cache = MemoryAnalysisCache() if no_cache else build_cache(config)

    return AnalysisService(
        cache=cache,
        source=DirectorySubmissionSource(root),
        engines=build_engines(config.engines, config),
        metrics=LoggingMetricsRecorder(),
        config=config,
    )


def emit_report(report: AnalysisReport, output: Optional[Path], format: str, detailed: bool = False):
    if output:
        ReportGenerator().save_report(report, str(output), format)
    display_report(report, str(output) if output else None, detailed=detailed)


def fail(message: str):
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def run_analysis(service: AnalysisService, analyze, submission_ids: List[str], wait: bool, requester: str):
    """
    Run one analysis and collect what did not succeed instead of aborting.

    Returns:
        (analyses, pending count, failure message per key)
    """
    try:
        analyses, pending = analyze(submission_ids, wait, requester)
        return analyses, pending, {}
    except IncompleteAnalysisError as ex:
        click.echo(f"⚠️  {ex}", err=True)
        for key, error in ex.failures.items():
            click.echo(f"   {key}: {error}", err=True)
        return ex.results, 0, {key: str(error) for key, error in ex.failures.items()}
    finally:
        # Without waiting, queued analyses are dropped on exit; running ones finish.
        service.close(cancel_pending=not wait)


def common_options(func):
    """Options shared by the analysis commands."""
    decorators = [
        click.argument('root', type=click.Path(exists=True, file_okay=False, path_type=Path)),
        click.argument('submission_ids', nargs=-1, required=True),
        click.option('--engine', '-e', 'engines', multiple=True, type=click.Choice(ENGINE_NAMES),
                     help='Similarity engine to run (repeatable, defaults to PLAG_ENGINES)'),
        click.option('--redis-url', help='Redis server of the analysis cache (defaults to PLAG_REDIS_URL)'),
        click.option('--no-cache', is_flag=True, help='Keep analyses in memory only'),
        click.option('--no-wait', is_flag=True,
                     help='Report uncached analyses as pending. Analyses already running finish '
                          'before the command exits, queued ones are dropped'),
        click.option('--requester', default='', help='Email the usage metrics are attributed to'),
        click.option('--output', '-o', type=click.Path(path_type=Path), help='Output file path'),
        click.option('--format', '-f', type=click.Choice(REPORT_FORMATS), default='json', help='Output format'),
        click.option('--verbose', '-v', is_flag=True, help='Enable verbose output'),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="plag-engine")
def cli():
    """Plagiarism and trend analysis of course submissions."""
    pass


@cli.command()
@common_options
@click.option('--detailed', '-d', is_flag=True, help='Show per-file scores for every pair')
def pairwise(
    root: Path,
    submission_ids: Tuple[str, ...],
    engines: Tuple[str, ...],
    redis_url: Optional[str],
    no_cache: bool,
    no_wait: bool,
    requester: str,
    output: Optional[Path],
    format: str,
    verbose: bool,
    detailed: bool
):
    """
    Compare every pair of the given submissions.

    ROOT: Submissions directory (course/assignment/user/timestamp/files)
    SUBMISSION_IDS: Ids in the form course::assignment::user::timestamp
    """
    setup_logging(verbose)

    try:
        service = build_service(root, engines, redis_url, no_cache)
        analyses, pending, failures = run_analysis(
            service, service.pairwise_analysis, list(submission_ids), not no_wait, requester)
    except AnalysisError as ex:
        fail(str(ex))

    report = AnalysisReport(
        pairwise=analyses,
        pairwise_summary=new_pairwise_analysis_summary(analyses, pending + len(failures)),
        pending_count=pending,
        failures=failures,
    )
    emit_report(report, output, format, detailed=detailed)


@cli.command()
@common_options
def individual(
    root: Path,
    submission_ids: Tuple[str, ...],
    engines: Tuple[str, ...],
    redis_url: Optional[str],
    no_cache: bool,
    no_wait: bool,
    requester: str,
    output: Optional[Path],
    format: str,
    verbose: bool
):
    """
    Measure each submission against the author's previous one.

    ROOT: Submissions directory (course/assignment/user/timestamp/files)
    SUBMISSION_IDS: Ids in the form course::assignment::user::timestamp
    """
    setup_logging(verbose)

    try:
        service = build_service(root, engines, redis_url, no_cache)
        analyses, pending, failures = run_analysis(
            service, service.individual_analysis, list(submission_ids), not no_wait, requester)
    except AnalysisError as ex:
        fail(str(ex))

    report = AnalysisReport(
        individual=analyses,
        individual_summary=new_individual_analysis_summary(analyses, pending + len(failures)),
        pending_count=pending,
        failures=failures,
    )
    emit_report(report, output, format)


@cli.command()
@click.argument('submission_ids', nargs=-1, required=True)
@click.option('--kind', '-k', type=click.Choice(['pairwise', 'individual']), default='pairwise',
              help='Which analyses to summarize')
@click.option('--redis-url', help='Redis server of the analysis cache (defaults to PLAG_REDIS_URL)')
@click.option('--precision', '-p', type=int, default=2, help='Decimal places of the aggregates')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
def summary(submission_ids: Tuple[str, ...], kind: str, redis_url: Optional[str], precision: int, verbose: bool):
    """
    Summarize already cached analyses without computing new ones.

    SUBMISSION_IDS: Ids in the form course::assignment::user::timestamp
    """
    setup_logging(verbose)
    console = create_console()

    config = Config()
    if redis_url:
        config.redis_url = redis_url

    try:
        cache = build_cache(config)
        if kind == 'pairwise':
            keys = enumerate_pairwise_keys(list(submission_ids))
            found = cache.get_pairwise(keys)
            result = new_pairwise_analysis_summary([found[key] for key in keys if key in found],
                                                   len(keys) - len(found))
            result.round_with_precision(precision)
            display_pairwise_summary(console, result)
        else:
            ids = list(dict.fromkeys(submission_ids))
            found = cache.get_individual(ids)
            result = new_individual_analysis_summary([found[id] for id in ids if id in found],
                                                     len(ids) - len(found))
            result.round_with_precision(precision)
            display_individual_summary(console, result)
    except AnalysisError as ex:
        fail(str(ex))


@cli.command()
@click.argument('file1', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('file2', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--engine', '-e', 'engines', multiple=True, type=click.Choice(ENGINE_NAMES),
              help='Similarity engine to run (repeatable, defaults to PLAG_ENGINES)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
def compare(file1: Path, file2: Path, engines: Tuple[str, ...], verbose: bool):
    """
    Compare two files with every configured engine.

    FILE1: First file
    FILE2: Second file
    """
    setup_logging(verbose)

    try:
        built = build_engines(list(engines) or None)
    except AnalysisError as ex:
        fail(str(ex))

    click.echo(f"🔍 Comparing {file1} and {file2}")

    scores: List[float] = []
    for engine in built:
        try:
            similarity = engine.compute_file_similarity((str(file1), str(file2)))
        except AnalysisError as ex:
            click.echo(f"   {engine.name}: ❌ {ex}", err=True)
            continue

        scores.append(similarity.score)
        click.echo(f"   {engine.name} {engine.version}: {similarity.score:.2%}")

    if not scores:
        fail("No engine could compare the files.")

    mean = sum(scores) / len(scores)
    click.echo(f"\n📊 Mean similarity: {mean:.2%}")
    if mean >= 0.75:
        click.echo("   ⚠️  High similarity detected - possible plagiarism")


@cli.command()
@click.argument('task_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('root', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--redis-url', help='Redis server of the analysis cache (defaults to PLAG_REDIS_URL)')
@click.option('--requester', default='', help='Email the usage metrics are attributed to')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
def task(task_file: Path, root: Path, redis_url: Optional[str], requester: str, verbose: bool):
    """
    Run an analysis task described by a JSON file.

    TASK_FILE: JSON with 'type', 'name', 'disabled' and an 'options' object
    ROOT: Submissions directory (course/assignment/user/timestamp/files)
    """
    setup_logging(verbose)
    console = create_console()

    try:
        task_info = TaskInfo.model_validate(json.loads(task_file.read_text(encoding='utf-8')))
    except ValueError as ex:
        fail(f"Invalid task file: {ex}")

    try:
        with build_service(root, (), redis_url, False) as service:
            result = run_analysis_task(service, task_info, requester)
    except AnalysisError as ex:
        fail(str(ex))

    if result is None:
        click.echo(f"Task '{task_info.name or task_info.type}' is disabled.")
        return

    if result.pairwise is not None:
        display_pairwise_summary(console, result.pairwise)
    if result.individual is not None:
        display_individual_summary(console, result.individual)


if __name__ == "__main__":
    cli()
