"""Analysis options: which files take part in a comparison and which are template code."""

import hashlib
import json
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Literal, Optional
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, Field

from .errors import ConfigError, FetchError
from .files import copy_dirent, list_relpaths, normalize_relpath, remove_dirent
from .log import base_logger

logger = base_logger.getChild('options')

DEFAULT_INCLUDE_REGEX = r".*"

FETCH_TIMEOUT_SECS = 30


class FileSpec(BaseModel):
    """Where a template file comes from: a local path, a URL, or a git repository."""

    type: Literal["path", "url", "git"] = "path"
    path: str = Field(description="Relative path (type=path) or remote location (url, git)")
    dest: Optional[str] = Field(default=None, description="Relative destination inside the template dir")
    reference: Optional[str] = Field(default=None, description="Git ref to check out")

    def normalize(self):
        if self.type == "path":
            self.path = normalize_relpath(self.path)
        else:
            self.path = self.path.strip()

        if self.dest is not None:
            self.dest = normalize_relpath(self.dest)

    def default_dest(self) -> str:
        if self.dest:
            return self.dest

        if self.type == "path":
            return Path(self.path).name

        name = Path(urlparse(self.path).path).name
        if self.type == "git" and name.endswith(".git"):
            name = name[:-len(".git")]

        return name or "template"


class FileOperation(BaseModel):
    """A file operation applied to staged template files (e.g. ['copy', 'a', 'b'])."""

    op: Literal["copy", "move", "mkdir", "remove"]
    args: List[str] = Field(default_factory=list)

    @classmethod
    def from_list(cls, parts: List[str]) -> 'FileOperation':
        if not parts:
            raise ValueError("File operation cannot be empty.")
        return cls(op=parts[0].strip().lower(), args=list(parts[1:]))

    def normalize(self):
        expected = 2 if self.op in ("copy", "move") else 1
        if len(self.args) != expected:
            raise ValueError(f"Operation '{self.op}' takes {expected} argument(s), got {len(self.args)}.")

        self.args = [normalize_relpath(arg) for arg in self.args]

    def apply(self, base_dir: Path):
        paths = [base_dir / arg for arg in self.args]

        if self.op == "copy":
            copy_dirent(paths[0], paths[1])
        elif self.op == "move":
            paths[1].parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(paths[0]), str(paths[1]))
        elif self.op == "mkdir":
            paths[0].mkdir(parents=True, exist_ok=True)
        elif self.op == "remove":
            remove_dirent(paths[0])


class AnalysisOptions(BaseModel):
    """Options controlling which files are compared and which are template code."""

    include_patterns: List[str] = Field(default_factory=list, description="Regexes a relpath must match")
    exclude_patterns: List[str] = Field(default_factory=list, description="Regexes a relpath must not match")
    template_files: List[FileSpec] = Field(default_factory=list)
    template_file_ops: List[FileOperation] = Field(default_factory=list)

    def validate_options(self):
        """
        Check and normalize the options in place.

        Must be called before any other method. Calling it again on
        already-normalized options changes nothing.

        Raises:
            ConfigError: on a bad pattern or an unsafe template path
        """
        if not self.include_patterns:
            self.include_patterns = [DEFAULT_INCLUDE_REGEX]

        for pattern in self.include_patterns:
            _compile(pattern, "include")

        for pattern in self.exclude_patterns:
            _compile(pattern, "exclude")

        for i, file_spec in enumerate(self.template_files):
            try:
                file_spec.normalize()
            except ValueError as ex:
                raise ConfigError(f"Template file {i} is invalid: {ex}") from ex

        for i, operation in enumerate(self.template_file_ops):
            try:
                operation.normalize()
            except ValueError as ex:
                raise ConfigError(f"Template file operation {i} is invalid: {ex}") from ex

    def match_relpath(self, relpath: str) -> bool:
        """True if the path is included and not excluded. An empty path never matches."""
        if not relpath:
            return False

        include_patterns = self.include_patterns or [DEFAULT_INCLUDE_REGEX]
        if not any(re.search(pattern, relpath) for pattern in include_patterns):
            return False

        return not any(re.search(pattern, relpath) for pattern in self.exclude_patterns)

    def has_templates(self) -> bool:
        return bool(self.template_files)

    def fetch_template_files(self, base_dir, dest_dir) -> List[str]:
        """
        Stage all template files into dest_dir and apply the template operations.

        Args:
            base_dir: Directory that relative template paths resolve against
            dest_dir: Directory to write the templates to

        Returns:
            Sorted relative paths of every resulting template file

        Raises:
            FetchError: if anything cannot be fetched or an operation fails.
                Files already written are left for the caller to clean up.
        """
        base_dir = Path(base_dir)
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        for file_spec in self.template_files:
            dest = dest_dir / file_spec.default_dest()
            try:
                if file_spec.type == "path":
                    _fetch_path(base_dir / file_spec.path, dest)
                elif file_spec.type == "url":
                    _fetch_url(file_spec.path, dest)
                else:
                    _fetch_git(file_spec.path, dest, file_spec.reference)
            except FetchError:
                raise
            except (OSError, requests.RequestException, subprocess.SubprocessError) as ex:
                raise FetchError(f"Failed to fetch template file '{file_spec.path}': {ex}") from ex

            logger.debug(f"Fetched template '{file_spec.path}' into '{dest}'")

        for operation in self.template_file_ops:
            try:
                operation.apply(dest_dir)
            except (OSError, shutil.Error) as ex:
                raise FetchError(f"Failed template file operation '{operation.op} {' '.join(operation.args)}': {ex}") from ex

        return list_relpaths(dest_dir)

    def options_hash(self) -> str:
        """Stable hash of the normalized options."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def validate_options(options: Optional[AnalysisOptions]) -> AnalysisOptions:
    """Validate options that may be missing entirely. Returns the same object."""
    if options is None:
        raise ConfigError("Analysis options cannot be None.")

    options.validate_options()
    return options


def _compile(pattern: str, kind: str):
    try:
        return re.compile(pattern)
    except re.error as ex:
        raise ConfigError(f"Failed to compile {kind} pattern '{pattern}': {ex}") from ex


def _fetch_path(source: Path, dest: Path):
    if not source.exists():
        raise FetchError(f"Template path does not exist: '{source}'.")
    copy_dirent(source, dest)


def _fetch_url(url: str, dest: Path):
    response = requests.get(url, timeout=FETCH_TIMEOUT_SECS)
    if response.status_code != 200:
        raise FetchError(f"Failed to download template '{url}' (status {response.status_code}).")

    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(response.content)


def _fetch_git(url: str, dest: Path, reference: Optional[str]):
    dest.parent.mkdir(parents=True, exist_ok=True)

    commands = [["git", "clone", "--quiet", url, str(dest)]]
    if reference:
        commands.append(["git", "-C", str(dest), "checkout", "--quiet", reference])

    for cmd in commands:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=FETCH_TIMEOUT_SECS * 4)
        if result.returncode != 0:
            raise FetchError(f"Command '{' '.join(cmd)}' failed: {result.stderr.strip()}")

    remove_dirent(dest / ".git")
