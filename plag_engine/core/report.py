"""Report generation for analysis results."""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .summary import AggregateValues, IndividualAnalysisSummary, PairwiseAnalysisSummary
from .types import IndividualAnalysis, PairwiseAnalysis, now

REPORT_FORMATS = ["json", "text"]


class AnalysisReport(BaseModel):
    """Everything one analysis request produced."""

    generated: datetime = Field(default_factory=now)
    pairwise: List[PairwiseAnalysis] = Field(default_factory=list)
    individual: List[IndividualAnalysis] = Field(default_factory=list)
    pairwise_summary: Optional[PairwiseAnalysisSummary] = None
    individual_summary: Optional[IndividualAnalysisSummary] = None
    pending_count: int = 0
    failures: Dict[str, str] = Field(default_factory=dict, description="Error message per key that failed")


class ReportGenerator:
    """Generates various report formats for analysis results."""

    def generate_json(self, report: AnalysisReport, indent: int = 2) -> str:
        """
        Generate JSON format report.

        Args:
            report: AnalysisReport object
            indent: JSON indentation level

        Returns:
            JSON string
        """
        return report.model_dump_json(indent=indent, exclude_none=True)

    def generate_text(self, report: AnalysisReport, max_files: int = 20) -> str:
        """
        Generate plain text format report.

        Args:
            report: AnalysisReport object
            max_files: Maximum number of files listed per analysis

        Returns:
            Plain text report
        """
        lines = []
        lines.append("=" * 60)
        lines.append("SUBMISSION ANALYSIS REPORT")
        lines.append("=" * 60)
        lines.append(f"Generated: {report.generated.strftime('%Y-%m-%d %H:%M:%S')}")
        if report.pending_count:
            lines.append(f"Pending analyses: {report.pending_count}")
        if report.failures:
            lines.append(f"Failed analyses: {len(report.failures)}")
        lines.append("")

        if report.pairwise:
            lines.append("PAIRWISE ANALYSES:")
            lines.append("-" * 60)
            for analysis in report.pairwise:
                lines.extend(self._pairwise_lines(analysis, max_files))
                lines.append("-" * 60)
            lines.append("")

        if report.pairwise_summary is not None:
            lines.append("PAIRWISE SUMMARY:")
            lines.extend(self._status_lines(report.pairwise_summary))
            lines.append(self._aggregate_line("Total mean similarity",
                                              report.pairwise_summary.aggregate_total_mean_similarities))
            for filename, values in report.pairwise_summary.aggregate_mean_similarities.items():
                lines.append(self._aggregate_line(filename, values))
            lines.append("")

        if report.individual:
            lines.append("INDIVIDUAL ANALYSES:")
            lines.append("-" * 60)
            for analysis in report.individual:
                lines.extend(self._individual_lines(analysis, max_files))
                lines.append("-" * 60)
            lines.append("")

        if report.individual_summary is not None:
            summary = report.individual_summary
            lines.append("INDIVIDUAL SUMMARY:")
            lines.extend(self._status_lines(summary))
            lines.append(self._aggregate_line("Score", summary.aggregate_score))
            lines.append(self._aggregate_line("Lines of code", summary.aggregate_lines_of_code))
            lines.append(self._aggregate_line("Time delta (s)", summary.aggregate_submission_time_delta))
            lines.append(self._aggregate_line("LOC delta", summary.aggregate_lines_of_code_delta))
            lines.append(self._aggregate_line("Score delta", summary.aggregate_score_delta))
            lines.append(self._aggregate_line("LOC / minute", summary.aggregate_lines_of_code_velocity))
            lines.append(self._aggregate_line("Score / minute", summary.aggregate_score_velocity))
            for filename, values in summary.aggregate_lines_of_code_per_file.items():
                lines.append(self._aggregate_line(f"LOC {filename}", values))
            lines.append("")

        if report.failures:
            lines.append("FAILED ANALYSES:")
            for key, message in report.failures.items():
                lines.append(f"  {key}: {message}")
            lines.append("")

        if not (report.pairwise or report.individual):
            lines.append("No completed analyses.")

        return "\n".join(lines)

    def _pairwise_lines(self, analysis: PairwiseAnalysis, max_files: int) -> List[str]:
        key = analysis.submission_ids
        lines = [
            f"{key.first} <-> {key.second}",
            f"  Total mean similarity: {analysis.total_mean_similarity:.2%}",
        ]

        filenames = sorted(analysis.mean_similarities)
        for filename in filenames[:max_files]:
            tools = ", ".join(f"{sim.tool}={sim.score:.2f}" for sim in analysis.similarities.get(filename, []))
            lines.append(f"  {filename}: {analysis.mean_similarities[filename]:.2%} ({tools})")
        if len(filenames) > max_files:
            lines.append(f"  ... and {len(filenames) - max_files} more files")

        for first, second in analysis.unmatched_files:
            lines.append(f"  Unmatched: {first or '-'} / {second or '-'}")
        if analysis.skipped_files:
            lines.append(f"  Skipped: {', '.join(analysis.skipped_files)}")
        for filename, tools in sorted(analysis.engine_failures.items()):
            lines.append(f"  Engine failures: {filename} ({', '.join(tools)})")

        return lines

    def _individual_lines(self, analysis: IndividualAnalysis, max_files: int) -> List[str]:
        lines = [
            f"{analysis.submission_id}",
            f"  Score: {analysis.score:.2f} (delta {analysis.score_delta:+.2f}, {analysis.score_velocity:+.2f}/min)",
            f"  Lines of code: {analysis.lines_of_code} "
            f"(delta {analysis.lines_of_code_delta:+.0f}, {analysis.lines_of_code_velocity:+.2f}/min)",
            f"  Since previous submission: {analysis.submission_time_delta:.0f}s",
        ]

        for file_info in analysis.files[:max_files]:
            lines.append(f"  {file_info.filename}: {file_info.lines_of_code} lines")
        if len(analysis.files) > max_files:
            lines.append(f"  ... and {len(analysis.files) - max_files} more files")
        if analysis.skipped_files:
            lines.append(f"  Skipped: {', '.join(analysis.skipped_files)}")

        return lines

    def _status_lines(self, summary) -> List[str]:
        lines = [f"  Complete: {'yes' if summary.complete else 'no'} "
                 f"({summary.complete_count} done, {summary.pending_count} pending)"]
        if summary.first_timestamp is not None:
            lines.append(f"  Analyzed between {summary.first_timestamp.strftime('%Y-%m-%d %H:%M:%S')} "
                         f"and {summary.last_timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
        return lines

    def _aggregate_line(self, label: str, values: AggregateValues) -> str:
        return (f"  {label}: n={values.count} mean={values.mean:.2f} median={values.median:.2f} "
                f"min={values.min:.2f} max={values.max:.2f}")

    def save_report(
        self,
        report: AnalysisReport,
        output_path: str,
        format: str = "json"
    ):
        """
        Save report to file.

        Args:
            report: AnalysisReport object
            output_path: Path to save the report
            format: Output format (json, text)
        """
        path = Path(output_path)

        if format == "json":
            content = self.generate_json(report)
        elif format == "text":
            content = self.generate_text(report)
        else:
            raise ValueError(f"Unsupported format: {format}")

        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
