"""JPlag engine: token-based comparison through the JPlag command-line tool."""

import json
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import EngineError
from ..files import copy_dirent
from ..log import base_logger
from .base import SimilarityEngine, run_tool

logger = base_logger.getChild('engines.jplag')

DEFAULT_MIN_TOKENS = 12
DEFAULT_TIMEOUT_SECS = 60.0
DEFAULT_LANGUAGE = "text"

LANGUAGES = {
    ".py": "python3",
    ".java": "java",
    ".c": "cpp",
    ".h": "cpp",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".go": "golang",
    ".kt": "kotlin",
    ".rs": "rust",
    ".scala": "scala",
    ".swift": "swift",
    ".js": "javascript",
    ".ts": "typescript",
    ".r": "rlang",
    ".scm": "scheme",
}

SUBMISSION_NAMES = ("a", "b")
RESULT_NAME = "result.zip"


class JPlagEngine(SimilarityEngine):
    """Runs JPlag on a two-submission tree and reads the average similarity."""

    name = "jplag"

    def __init__(
        self,
        command: Optional[List[str]] = None,
        min_tokens: int = DEFAULT_MIN_TOKENS,
        timeout: float = DEFAULT_TIMEOUT_SECS,
        version: str = "5"
    ):
        """
        Initialize the JPlag engine.

        Args:
            command: Command prefix that starts JPlag (e.g. ['java', '-jar', 'jplag.jar'])
            min_tokens: Sensitivity, the minimum run of matching tokens
            timeout: Seconds before the tool is killed
            version: Reported engine version
        """
        self.command = command or ["java", "-jar", "jplag.jar"]
        self.min_tokens = min_tokens
        self.timeout = timeout
        self.version = version

    def compute_score(self, path_a: Path, path_b: Path) -> float:
        language = LANGUAGES.get(path_a.suffix.lower(), DEFAULT_LANGUAGE)

        with tempfile.TemporaryDirectory(prefix="plag-jplag-") as temp_dir:
            temp_dir = Path(temp_dir)
            submissions_dir = temp_dir / "submissions"

            for submission, path in zip(SUBMISSION_NAMES, (path_a, path_b)):
                copy_dirent(path, submissions_dir / submission / path_a.name)

            result_path = temp_dir / RESULT_NAME
            cmd = self.command + [
                "--mode", "RUN",
                "-l", language,
                "-t", str(self.min_tokens),
                "-r", str(result_path),
                str(submissions_dir),
            ]

            run_tool(self.name, cmd, self.timeout, cwd=temp_dir)

            overview = self._read_overview(temp_dir)

        return parse_overview(overview)

    def _read_overview(self, temp_dir: Path) -> Dict[str, Any]:
        candidates = sorted(temp_dir.glob("result*.zip"))
        if not candidates:
            raise EngineError("JPlag did not produce a result archive", engine=self.name)

        try:
            with zipfile.ZipFile(candidates[0]) as archive:
                names = [name for name in archive.namelist() if name.endswith("overview.json")]
                if not names:
                    raise EngineError("JPlag result archive has no overview.json", engine=self.name)
                return json.loads(archive.read(names[0]).decode("utf-8"))
        except (zipfile.BadZipFile, ValueError) as ex:
            raise EngineError(f"Unable to read JPlag results: {ex}", engine=self.name) from ex


def parse_overview(overview: Dict[str, Any]) -> float:
    """
    Pull the average similarity of the single compared pair out of a JPlag overview.

    Understands the v5 layout ('top_comparisons' with a 'similarities' map) and the
    older v4 layout ('metrics' with per-metric 'topComparisons').
    """
    comparisons = overview.get("top_comparisons")
    if isinstance(comparisons, list) and comparisons:
        similarities = comparisons[0].get("similarities", {}) if isinstance(comparisons[0], dict) else {}
        if "AVG" in similarities:
            return _as_fraction(similarities["AVG"])

    for metric in overview.get("metrics", []) or []:
        if not isinstance(metric, dict) or metric.get("name") != "AVG":
            continue
        top = metric.get("topComparisons") or []
        if top and isinstance(top[0], dict) and "similarity" in top[0]:
            return _as_fraction(top[0]["similarity"])

    raise EngineError("Could not find an average similarity in the JPlag overview", engine=JPlagEngine.name)


def _as_fraction(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError) as ex:
        raise EngineError(f"Bad JPlag similarity value '{value}'", engine=JPlagEngine.name) from ex

    # Some versions report percentages.
    if score > 1.0:
        score /= 100.0

    return score
