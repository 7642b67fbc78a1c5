"""Base class shared by every similarity engine."""

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..errors import EngineError
from ..files import same_content
from ..log import base_logger
from ..types import FileSimilarity

logger = base_logger.getChild('engines')


class SimilarityEngine(ABC):
    """Scores how similar two files are, based only on their content."""

    name: str = ""
    version: str = ""

    def compute_file_similarity(
        self,
        paths: Tuple[str, str],
        filename: Optional[str] = None,
        original_filename: Optional[str] = None
    ) -> FileSimilarity:
        """
        Compare two files.

        Args:
            paths: The two files to compare
            filename: Name to report the result under (defaults to the first file's name)
            original_filename: Name of the file before pre-processing, if it was converted

        Returns:
            FileSimilarity with a score in [0, 1]; identical content scores exactly 1.0

        Raises:
            EngineError: if the comparison could not be carried out
        """
        path_a, path_b = Path(paths[0]), Path(paths[1])
        if filename is None:
            filename = path_a.name

        try:
            identical = same_content(path_a, path_b)
        except OSError as ex:
            raise EngineError(f"Unable to read files for comparison: {ex}", engine=self.name) from ex

        if identical:
            score = 1.0
        else:
            try:
                score = self.compute_score(path_a, path_b)
            except EngineError:
                raise
            except (OSError, ValueError) as ex:
                raise EngineError(f"Comparison of '{filename}' failed: {ex}", engine=self.name) from ex

        return FileSimilarity(
            filename=filename,
            original_filename=original_filename,
            tool=self.name,
            version=self.version,
            score=min(1.0, max(0.0, float(score))),
        )

    @abstractmethod
    def compute_score(self, path_a: Path, path_b: Path) -> float:
        """Engine-specific comparison of two files with different content."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"


def run_tool(engine_name: str, cmd: Sequence[str], timeout: float, cwd=None) -> subprocess.CompletedProcess:
    """
    Run an external comparison tool.

    Raises:
        EngineError: if the tool is missing, times out, or exits non-zero
    """
    cmd = [str(part) for part in cmd]
    logger.debug(f"Running {engine_name}: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, cwd=cwd)
    except FileNotFoundError as ex:
        raise EngineError(f"Tool executable not found: '{cmd[0]}'", engine=engine_name) from ex
    except subprocess.TimeoutExpired as ex:
        raise EngineError(f"Tool timed out after {timeout} seconds", engine=engine_name) from ex

    if result.returncode != 0:
        raise EngineError(
            f"Tool exited with code {result.returncode}: {_tail(result.stderr or result.stdout)}",
            engine=engine_name,
        )

    return result


def _tail(text: str, lines: int = 5) -> str:
    parts: List[str] = (text or "").strip().splitlines()
    return " | ".join(parts[-lines:])
