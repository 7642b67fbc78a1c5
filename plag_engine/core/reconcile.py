"""File reconciliation: line up the files of two submissions and score every matched pair."""

import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from .engines.base import SimilarityEngine
from .errors import EngineError, FetchError
from .files import copy_dirent, list_relpaths, same_content
from .log import base_logger
from .options import AnalysisOptions
from .preprocess import DEFAULT_STAGES, PreprocessStage, preprocess_tree
from .types import FileSimilarity

logger = base_logger.getChild('reconcile')


class ReconciliationResult(BaseModel):
    """Everything a pairwise analysis needs from the two file trees."""

    similarities: Dict[str, List[FileSimilarity]] = Field(default_factory=dict)
    unmatched: List[Tuple[str, str]] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    engine_failures: Dict[str, List[str]] = Field(
        default_factory=dict, description="Names of the engines that failed, per matched file")


class _PreparedTree:
    """A scratch copy of a tree after pre-processing."""

    def __init__(self, root: Path, renames: Dict[str, str]):
        self.root = root
        self.renames = renames
        self.relpaths = list_relpaths(root)

    def original(self, relpath: str) -> Optional[str]:
        return self.renames.get(relpath)


def prepare_tree(source, scratch: Path, stages: Sequence[PreprocessStage] = DEFAULT_STAGES) -> _PreparedTree:
    """Copy a tree into scratch space and run the pre-processing stages on the copy."""
    source = Path(source)
    if not source.is_dir():
        raise FetchError(f"Submission directory does not exist: '{source}'.")

    copy_dirent(source, scratch)
    return _PreparedTree(scratch, preprocess_tree(scratch, stages))


def is_template_file(relpath: str, path: Path, template_dir: Optional[Path]) -> bool:
    """True if the file is byte-identical to the template file at the same relative path."""
    if template_dir is None:
        return False

    template_path = template_dir / relpath
    return template_path.is_file() and same_content(path, template_path)


def compute_file_similarities(
    paths: Tuple[str, str],
    engines: Sequence[SimilarityEngine],
    options: Optional[AnalysisOptions] = None,
    template_dir=None,
    stages: Sequence[PreprocessStage] = DEFAULT_STAGES
) -> ReconciliationResult:
    """
    Compare two submission trees file by file.

    Args:
        paths: The two submission directories (read only)
        engines: Engines to run on every matched file
        options: Validated analysis options (match everything when omitted)
        template_dir: Directory holding staged template files, if any
        stages: Pre-processing stages applied before matching

    Returns:
        ReconciliationResult with per-file similarities, unmatched and skipped files,
        and the engines that failed on each matched file
    """
    if options is None:
        options = AnalysisOptions()
        options.validate_options()

    with tempfile.TemporaryDirectory(prefix="plag-reconcile-") as scratch:
        scratch = Path(scratch)

        trees = [prepare_tree(path, scratch / str(i), stages) for i, path in enumerate(paths)]

        templates = None
        if template_dir is not None and Path(template_dir).is_dir():
            templates = prepare_tree(template_dir, scratch / "templates", stages).root

        skipped: Set[str] = set()
        kept: List[Set[str]] = []
        for tree in trees:
            tree_kept = set()
            for relpath in tree.relpaths:
                if not options.match_relpath(relpath):
                    skipped.add(relpath)
                elif is_template_file(relpath, tree.root / relpath, templates):
                    logger.debug(f"Skipping template file '{relpath}'")
                    skipped.add(relpath)
                else:
                    tree_kept.add(relpath)
            kept.append(tree_kept)

        # A file skipped on either side is skipped for the pair.
        kept = [tree_kept - skipped for tree_kept in kept]

        unmatched = sorted(
            [(relpath, "") for relpath in kept[0] - kept[1]] +
            [("", relpath) for relpath in kept[1] - kept[0]]
        )

        result = ReconciliationResult(unmatched=unmatched, skipped=sorted(skipped))

        for relpath in sorted(kept[0] & kept[1]):
            file_paths = (str(trees[0].root / relpath), str(trees[1].root / relpath))
            original = trees[0].original(relpath) or trees[1].original(relpath)

            sims = []
            for engine in engines:
                try:
                    sims.append(engine.compute_file_similarity(file_paths, relpath, original))
                except EngineError as ex:
                    result.engine_failures.setdefault(relpath, []).append(engine.name)
                    logger.warning(f"Engine '{engine.name}' failed on '{relpath}', dropping its score: {ex}")

            if sims:
                result.similarities[relpath] = sims

    return result
