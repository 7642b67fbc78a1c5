"""Dolos engine: structural comparison through the Dolos command-line tool."""

import csv
import io
import tempfile
from pathlib import Path
from typing import List, Optional

from ..errors import EngineError
from ..files import copy_dirent, read_text
from ..log import base_logger
from .base import SimilarityEngine, run_tool

logger = base_logger.getChild('engines.dolos')

DEFAULT_TIMEOUT_SECS = 60.0

# Files with other extensions are left to Dolos' own language detection.
LANGUAGES = {
    ".py": "python",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".js": "javascript",
    ".ts": "typescript",
    ".r": "r",
    ".rs": "rust",
    ".sql": "sql",
    ".sh": "bash",
}

PAIRS_FILE = "pairs.csv"


class DolosEngine(SimilarityEngine):
    """Runs Dolos with CSV output and reads the similarity of the compared pair."""

    name = "dolos"

    def __init__(self, command: Optional[List[str]] = None, timeout: float = DEFAULT_TIMEOUT_SECS,
                 version: str = "2"):
        self.command = command or ["dolos"]
        self.timeout = timeout
        self.version = version

    def compute_score(self, path_a: Path, path_b: Path) -> float:
        with tempfile.TemporaryDirectory(prefix="plag-dolos-") as temp_dir:
            temp_dir = Path(temp_dir)
            inputs = []
            for submission, path in zip(("a", "b"), (path_a, path_b)):
                target = temp_dir / "input" / submission / path_a.name
                copy_dirent(path, target)
                inputs.append(str(target))

            output_dir = temp_dir / "output"
            cmd = self.command + [
                "run",
                "--output-format", "csv",
                "--output-destination", str(output_dir),
            ]

            language = LANGUAGES.get(path_a.suffix.lower())
            if language is not None:
                cmd += ["--language", language]

            run_tool(self.name, cmd + inputs, self.timeout, cwd=temp_dir)

            pairs_path = output_dir / PAIRS_FILE
            if not pairs_path.exists():
                raise EngineError(f"Dolos did not write '{PAIRS_FILE}'", engine=self.name)

            return parse_pairs_csv(read_text(pairs_path))


def parse_pairs_csv(text: str) -> float:
    """
    Read the similarity of the first well-formed row of a Dolos pairs.csv.

    Malformed rows are logged and skipped. No usable row is an EngineError.
    """
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames is None or "similarity" not in reader.fieldnames:
        raise EngineError("Dolos output has no 'similarity' column", engine=DolosEngine.name)

    for line_number, row in enumerate(reader, start=2):
        raw = (row.get("similarity") or "").strip()
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Skipping malformed Dolos output line {line_number}: {row}")

    raise EngineError("Dolos output contains no similarity score", engine=DolosEngine.name)
