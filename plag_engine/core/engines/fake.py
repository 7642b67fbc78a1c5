"""Deterministic in-process engine used as the reference implementation in tests."""

import difflib
from pathlib import Path

from ..files import read_text
from .base import SimilarityEngine


class FakeEngine(SimilarityEngine):
    """Line-based similarity with difflib. No external tools, always available."""

    name = "fake"
    version = "0.0.1"

    def compute_score(self, path_a: Path, path_b: Path) -> float:
        lines_a = read_text(path_a).splitlines()
        lines_b = read_text(path_b).splitlines()

        if not lines_a and not lines_b:
            return 1.0

        return difflib.SequenceMatcher(None, lines_a, lines_b, autojunk=False).ratio()
