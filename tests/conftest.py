"""Shared fixtures: a submissions directory built in tmp_path and a wired service."""

import fnmatch
import json
import threading
from pathlib import Path

import pytest

from plag_engine.core.cache import MemoryAnalysisCache
from plag_engine.core.config import Config
from plag_engine.core.engines.fake import FakeEngine
from plag_engine.core.metrics import MemoryMetricsRecorder
from plag_engine.core.service import AnalysisService
from plag_engine.core.submissions import DirectorySubmissionSource

COURSE = "course101"
ASSIGNMENT = "hw0"
STUDENT = "course-student@test.edulinq.org"
REQUESTER = "server-admin@test.edulinq.org"

SUBMISSION_PY = """def f(a, b):
    return a + b


def g(values):
    total = 0
    for value in values:
        total += value
    return total
"""


class FakeRedis:
    """
    In-process stand-in for a Redis server, covering the commands the analysis
    cache sends. Values are stored as bytes, as redis-py returns them.
    """

    def __init__(self):
        self.values = {}
        self.expires = {}
        self.clock = 0.0
        self.calls = []
        self.error = None
        self._lock = threading.RLock()

    def advance(self, seconds: float):
        with self._lock:
            self.clock += seconds

    def _check(self, command: str):
        self.calls.append(command)
        if self.error is not None:
            raise self.error

    def _live(self, name):
        expires = self.expires.get(name)
        if expires is not None and expires <= self.clock:
            self.values.pop(name, None)
            self.expires.pop(name, None)
        return self.values.get(name)

    def set(self, name, value, nx=False, ex=None):
        with self._lock:
            self._check("set")
            if nx and self._live(name) is not None:
                return None
            self.values[name] = value.encode("utf-8") if isinstance(value, str) else value
            if ex is not None:
                self.expires[name] = self.clock + ex
            else:
                self.expires.pop(name, None)
            return True

    def get(self, name):
        with self._lock:
            self._check("get")
            return self._live(name)

    def mget(self, names):
        with self._lock:
            self._check("mget")
            return [self._live(name) for name in names]

    def exists(self, *names):
        with self._lock:
            self._check("exists")
            return sum(1 for name in names if self._live(name) is not None)

    def delete(self, *names):
        with self._lock:
            self._check("delete")
            deleted = 0
            for name in names:
                if self._live(name) is not None:
                    deleted += 1
                self.values.pop(name, None)
                self.expires.pop(name, None)
            return deleted

    def eval(self, script, numkeys, *args):
        # Only the compare-and-delete release script is supported.
        with self._lock:
            self._check("eval")
            name, token = args[0], args[1]
            if self._live(name) == token.encode("utf-8"):
                return self.delete(name)
            return 0

    def scan_iter(self, match="*"):
        with self._lock:
            self._check("scan")
            names = [name for name in list(self.values) if self._live(name) is not None]
        return iter([name for name in names if fnmatch.fnmatchcase(name, match)])

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client: FakeRedis):
        self.client = client
        self.commands = []

    def set(self, name, value):
        self.commands.append((name, value))
        return self

    def execute(self):
        with self.client._lock:
            return [self.client.set(name, value) for name, value in self.commands]


def write_submission(root: Path, files: dict, timestamp: int, user: str = STUDENT,
                     course: str = COURSE, assignment: str = ASSIGNMENT, score=None) -> str:
    """Write one submission under root and return its id."""
    submission_root = root / course / assignment / user / str(timestamp)
    files_dir = submission_root / "files"
    files_dir.mkdir(parents=True)

    for relpath, content in files.items():
        path = files_dir / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    if score is not None:
        (submission_root / "result.json").write_text(json.dumps({"score": score}), encoding="utf-8")

    return "::".join([course, assignment, user, str(timestamp)])


def write_options(root: Path, options: dict, course: str = COURSE, assignment: str = ASSIGNMENT):
    path = root / course / assignment / "analysis.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(options), encoding="utf-8")


@pytest.fixture
def submissions_root(tmp_path) -> Path:
    root = tmp_path / "submissions"
    root.mkdir()
    return root


@pytest.fixture
def source(submissions_root) -> DirectorySubmissionSource:
    return DirectorySubmissionSource(submissions_root)


@pytest.fixture
def hw0_ids(submissions_root):
    """Three identical submissions by the same student."""
    return [
        write_submission(submissions_root, {"submission.py": SUBMISSION_PY}, timestamp, score=score)
        for timestamp, score in [(1697406256, 1.0), (1697406265, 2.0), (1697406272, 2.0)]
    ]


@pytest.fixture
def config() -> Config:
    return Config(engines=["fake"], max_workers=4, claim_wait_timeout=10.0)


@pytest.fixture
def cache() -> MemoryAnalysisCache:
    return MemoryAnalysisCache()


@pytest.fixture
def metrics() -> MemoryMetricsRecorder:
    return MemoryMetricsRecorder()


@pytest.fixture
def service(cache, source, metrics, config):
    analysis_service = AnalysisService(cache, source, [FakeEngine()], metrics=metrics, config=config)
    yield analysis_service
    analysis_service.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
