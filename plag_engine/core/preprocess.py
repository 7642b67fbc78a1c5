"""Pre-processing stages that rewrite special file formats into plain source before comparison."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .files import list_relpaths, read_text
from .log import base_logger

logger = base_logger.getChild('preprocess')


class PreprocessStage(ABC):
    """Converts files with one extension into an equivalent plain-source file."""

    extension: str = ""

    def handles(self, relpath: str) -> bool:
        return relpath.lower().endswith(self.extension)

    @abstractmethod
    def convert(self, path: Path) -> Optional[Path]:
        """
        Convert the file in place.

        Returns:
            Path of the converted file (the original is removed), or None when
            the file was left untouched.
        """


class NotebookStage(PreprocessStage):
    """Turns a Jupyter notebook into a Python file made of its code cells."""

    extension = ".ipynb"

    def convert(self, path: Path) -> Optional[Path]:
        try:
            notebook = json.loads(read_text(path))
        except (ValueError, OSError) as ex:
            logger.warning(f"Could not parse notebook '{path}', comparing it as-is: {ex}")
            return None

        cells = notebook.get("cells") if isinstance(notebook, dict) else None
        if not isinstance(cells, list):
            logger.warning(f"Notebook '{path}' has no cell list, comparing it as-is.")
            return None

        chunks = []
        for cell in cells:
            if not isinstance(cell, dict) or cell.get("cell_type") != "code":
                continue

            source = cell.get("source", "")
            if isinstance(source, list):
                source = "".join(str(line) for line in source)
            chunks.append(str(source).rstrip("\n"))

        target = path.with_suffix(".py")
        if target.exists():
            logger.warning(f"Both '{path.name}' and '{target.name}' exist, keeping the notebook unconverted.")
            return None

        target.write_text("\n\n".join(chunks) + "\n", encoding="utf-8")
        path.unlink()
        return target


DEFAULT_STAGES: List[PreprocessStage] = [NotebookStage()]


def preprocess_tree(root, stages: Sequence[PreprocessStage] = DEFAULT_STAGES) -> Dict[str, str]:
    """
    Run every matching stage over the files of a tree, in place.

    Args:
        root: Directory to rewrite (a scratch copy, never a submission)
        stages: Stages to try, first match wins

    Returns:
        Map of converted relpath -> original relpath
    """
    root = Path(root)
    renames = {}

    for relpath in list_relpaths(root):
        for stage in stages:
            if not stage.handles(relpath):
                continue

            converted = stage.convert(root / relpath)
            if converted is not None:
                renames[converted.relative_to(root).as_posix()] = relpath
            break

    return renames
