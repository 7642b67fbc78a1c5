"""Filesystem helpers shared by options, reconciliation and the engines."""

import os
import posixpath
import shutil
from pathlib import Path
from typing import List, Union

import chardet

from .log import base_logger

logger = base_logger.getChild('files')

PathLike = Union[str, os.PathLike]

# Tried after the detected encoding.
FALLBACK_ENCODINGS = ['utf-8', 'latin-1']


def read_text(file_path: PathLike) -> str:
    """
    Read a file with automatic encoding detection.

    Args:
        file_path: Path to the file

    Returns:
        File contents as string
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    raw_data = path.read_bytes()
    if not raw_data:
        return ""

    result = chardet.detect(raw_data)
    encoding = result['encoding'] or 'utf-8'
    logger.debug(f"Detected encoding for {file_path}: {encoding} (confidence: {result['confidence'] or 0:.2f})")

    for enc in [encoding] + FALLBACK_ENCODINGS:
        try:
            return raw_data.decode(enc)
        except (UnicodeDecodeError, LookupError):
            continue

    raise ValueError(f"Could not decode file {file_path} with any known encoding")


def same_content(path_a: PathLike, path_b: PathLike) -> bool:
    """Byte-for-byte comparison of two files."""
    path_a, path_b = Path(path_a), Path(path_b)
    if path_a.stat().st_size != path_b.stat().st_size:
        return False
    return path_a.read_bytes() == path_b.read_bytes()


def list_relpaths(base_dir: PathLike) -> List[str]:
    """Sorted relative paths (posix separators) of every file under a directory."""
    base_dir = Path(base_dir)
    relpaths = []
    for dirpath, _, filenames in os.walk(base_dir):
        for filename in filenames:
            path = Path(dirpath) / filename
            relpaths.append(path.relative_to(base_dir).as_posix())

    return sorted(relpaths)


def normalize_relpath(path: str) -> str:
    """
    Canonical relative form of a path: trimmed, '.' and '..' segments resolved.

    Raises ValueError if the path is absolute or leaves its base directory.
    """
    path = path.strip().replace('\\', '/')
    if posixpath.isabs(path) or os.path.isabs(path):
        raise ValueError(f"Path '{path}' is not allowed to be absolute. Only relative paths are allowed.")

    normalized = posixpath.normpath(path) if path else '.'
    if normalized == '..' or normalized.startswith('../'):
        raise ValueError(f"Path '{path}' points outside of its base directory.")

    return normalized


def copy_dirent(source: PathLike, dest: PathLike):
    """Copy a file or a directory tree, creating parents as needed."""
    source, dest = Path(source), Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, dest, dirs_exist_ok=True)
    else:
        shutil.copy2(source, dest)


def remove_dirent(path: PathLike):
    """Remove a file or directory if it exists."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def count_lines_of_code(path: PathLike) -> int:
    """Number of non-blank lines in a text file."""
    return sum(1 for line in read_text(path).splitlines() if line.strip())
