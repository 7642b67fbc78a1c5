"""Rich-based display module for analysis results."""

from typing import Dict, List, Optional

from rich.console import Console
from rich.style import Style
from rich.table import Table
from rich.text import Text

from ..core.report import AnalysisReport
from ..core.summary import AggregateValues, IndividualAnalysisSummary, PairwiseAnalysisSummary
from ..core.types import FileSimilarity, IndividualAnalysis, PairwiseAnalysis


def create_console() -> Console:
    """Create a rich Console instance."""
    return Console()


def get_similarity_style(similarity: float) -> Style:
    """
    Get color style based on similarity score.

    Args:
        similarity: Similarity score (0-1)

    Returns:
        Rich Style object
    """
    if similarity >= 0.95:
        return Style(color="red", bold=True)
    elif similarity >= 0.75:
        return Style(color="yellow", bold=True)
    else:
        return Style(color="cyan", bold=True)


def score_text(score: float) -> Text:
    return Text(f"{score:.1%}", style=get_similarity_style(score))


def pairwise_table(analyses: List[PairwiseAnalysis]) -> Table:
    """One row per pair, highest total similarity first."""
    table = Table(title="Pairwise similarity", expand=True)
    table.add_column("First")
    table.add_column("Second")
    table.add_column("Total", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Unmatched", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Engine failures", justify="right")

    for analysis in sorted(analyses, key=lambda a: a.total_mean_similarity, reverse=True):
        table.add_row(
            analysis.submission_ids.first,
            analysis.submission_ids.second,
            score_text(analysis.total_mean_similarity),
            str(len(analysis.similarities)),
            str(len(analysis.unmatched_files)),
            str(len(analysis.skipped_files)),
            Text(str(len(analysis.engine_failures)), style="red" if analysis.engine_failures else ""),
        )

    return table


def file_similarity_table(similarities: Dict[str, List[FileSimilarity]]) -> Table:
    """Per-file, per-engine scores of a single pair."""
    tools = sorted({sim.tool for sims in similarities.values() for sim in sims})

    table = Table(show_header=True, expand=True)
    table.add_column("File")
    for tool in tools:
        table.add_column(tool, justify="right")

    for filename in sorted(similarities):
        by_tool = {sim.tool: sim.score for sim in similarities[filename]}
        label = filename
        original = similarities[filename][0].original_filename if similarities[filename] else None
        if original:
            label = f"{filename} ({original})"
        cells = [score_text(by_tool[tool]) if tool in by_tool else Text("-", style="dim") for tool in tools]
        table.add_row(label, *cells)

    return table


def individual_table(analyses: List[IndividualAnalysis]) -> Table:
    table = Table(title="Individual analysis", expand=True)
    table.add_column("Submission")
    table.add_column("Score", justify="right")
    table.add_column("LOC", justify="right")
    table.add_column("Since previous", justify="right")
    table.add_column("LOC delta", justify="right")
    table.add_column("Score delta", justify="right")
    table.add_column("LOC/min", justify="right")
    table.add_column("Score/min", justify="right")

    for analysis in analyses:
        table.add_row(
            analysis.submission_id,
            f"{analysis.score:.2f}",
            str(analysis.lines_of_code),
            f"{analysis.submission_time_delta:.0f}s",
            f"{analysis.lines_of_code_delta:+.0f}",
            f"{analysis.score_delta:+.2f}",
            f"{analysis.lines_of_code_velocity:+.2f}",
            f"{analysis.score_velocity:+.2f}",
        )

    return table


def aggregate_table(title: str, rows: Dict[str, AggregateValues]) -> Table:
    table = Table(title=title, expand=True)
    table.add_column("Value")
    for column in ("Count", "Mean", "Median", "Min", "Max"):
        table.add_column(column, justify="right")

    for label, values in rows.items():
        table.add_row(
            label,
            str(values.count),
            f"{values.mean:.2f}",
            f"{values.median:.2f}",
            f"{values.min:.2f}",
            f"{values.max:.2f}",
        )

    return table


def display_pairwise_summary(console: Console, summary: PairwiseAnalysisSummary):
    rows = {"Total mean similarity": summary.aggregate_total_mean_similarities}
    rows.update(summary.aggregate_mean_similarities)
    console.print(aggregate_table("Pairwise summary", rows))
    display_status(console, summary.complete_count, summary.pending_count)


def display_individual_summary(console: Console, summary: IndividualAnalysisSummary):
    rows = {
        "Score": summary.aggregate_score,
        "Lines of code": summary.aggregate_lines_of_code,
        "Time delta (s)": summary.aggregate_submission_time_delta,
        "LOC delta": summary.aggregate_lines_of_code_delta,
        "Score delta": summary.aggregate_score_delta,
        "LOC / minute": summary.aggregate_lines_of_code_velocity,
        "Score / minute": summary.aggregate_score_velocity,
    }
    for filename, values in summary.aggregate_lines_of_code_per_file.items():
        rows[f"LOC {filename}"] = values

    console.print(aggregate_table("Individual summary", rows))
    display_status(console, summary.complete_count, summary.pending_count)


def display_status(console: Console, complete_count: int, pending_count: int):
    if pending_count:
        console.print(f"  {complete_count} complete, {pending_count} pending or failed", style="bold yellow")
    else:
        console.print(f"  All {complete_count} analyses complete", style="bold green")
    console.print()


def display_report(report: AnalysisReport, output_path: Optional[str] = None, detailed: bool = False):
    """
    Display an analysis report with rich formatting.

    Args:
        report: AnalysisReport object
        output_path: Path where the report was saved, if it was
        detailed: Also show per-file scores of every pair
    """
    console = create_console()

    if report.pairwise:
        console.print(pairwise_table(report.pairwise))
        if detailed:
            for analysis in report.pairwise:
                console.print(Text(str(analysis.submission_ids), style="bold cyan"))
                console.print(file_similarity_table(analysis.similarities))
        console.print()

    if report.pairwise_summary is not None:
        display_pairwise_summary(console, report.pairwise_summary)

    if report.individual:
        console.print(individual_table(report.individual))
        console.print()

    if report.individual_summary is not None:
        display_individual_summary(console, report.individual_summary)

    if report.failures:
        console.print(f"{len(report.failures)} analyses failed:", style="bold red")
        for key, message in report.failures.items():
            console.print(f"  {key}: {message}", style="red", markup=False)
        console.print()

    if not (report.pairwise or report.individual):
        console.print("No completed analyses.", style="dim")
        if report.pending_count:
            console.print(f"{report.pending_count} analyses are still being computed.", style="yellow")
        console.print()

    if output_path:
        console.print(f"Full report saved to: {output_path}", style="cyan")
