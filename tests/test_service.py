"""Tests for the analysis service: pairwise and individual analyses end to end."""

import threading
import time

import pytest

from plag_engine.core.cache import MemoryAnalysisCache
from plag_engine.core.config import Config
from plag_engine.core.engines.fake import FakeEngine
from plag_engine.core.errors import CacheError, ConfigError, EngineError, FetchError, IncompleteAnalysisError
from plag_engine.core.metrics import (
    ATTRIBUTE_KEY_ANALYSIS,
    METRIC_TYPE_CODE_ANALYSIS_TIME,
    MetricsRecorder,
)
from plag_engine.core.pairwise import enumerate_pairwise_keys
from plag_engine.core.service import AnalysisService
from plag_engine.core.types import PairwiseKey

from conftest import ASSIGNMENT, COURSE, REQUESTER, SUBMISSION_PY, write_options, write_submission


class CountingEngine(FakeEngine):
    """Fake engine that counts (and slows down) real comparisons."""

    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def compute_score(self, path_a, path_b):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return super().compute_score(path_a, path_b)


class TimingOutEngine(FakeEngine):
    name = "slow"

    def compute_score(self, path_a, path_b):
        raise EngineError("Tool timed out after 60 seconds", engine=self.name)


class FailingRecorder(MetricsRecorder):
    def record_course_metric(self, metric):
        raise RuntimeError("metrics store is down")


class BrokenCache(MemoryAnalysisCache):
    def get_pairwise(self, keys):
        raise CacheError("database is gone")


def distinct_submissions(root, count=3):
    return [
        write_submission(root, {"submission.py": SUBMISSION_PY + f"print({i})\n" * (i + 1)}, 1697406000 + i)
        for i in range(count)
    ]


class TestPairwiseAnalysis:
    """Test cases for pairwise analysis through the service."""

    def test_identical_submissions(self, service, cache, metrics, hw0_ids):
        keys = [PairwiseKey.of(hw0_ids[0], hw0_ids[1]),
                PairwiseKey.of(hw0_ids[0], hw0_ids[2]),
                PairwiseKey.of(hw0_ids[1], hw0_ids[2])]

        for expected_cached in (0, 3):
            assert len(cache.get_pairwise(keys)) == expected_cached

            results, pending = service.pairwise_analysis(hw0_ids, wait=True, requester=REQUESTER)

            assert pending == 0
            assert [result.submission_ids for result in results] == keys
            for result in results:
                assert list(result.similarities) == ["submission.py"]
                sim = result.similarities["submission.py"][0]
                assert (sim.filename, sim.tool, sim.version, sim.score) == ("submission.py", "fake", "0.0.1", 1.0)
                assert result.mean_similarities == {"submission.py": 1.0}
                assert result.total_mean_similarity == 1.0
                assert result.unmatched_files == []
                assert result.skipped_files == []

            assert len(cache.get_pairwise(keys)) == 3

        # Only the first run computed anything.
        recorded = metrics.get_course_metrics(COURSE)
        assert len(recorded) == 3
        for metric in recorded:
            assert metric.type == METRIC_TYPE_CODE_ANALYSIS_TIME
            assert metric.course_id == COURSE
            assert metric.assignment_id == ASSIGNMENT
            assert metric.user_email == REQUESTER
            assert metric.attributes == {ATTRIBUTE_KEY_ANALYSIS: "pairwise"}
            assert metric.value >= 0

    def test_cached_results_are_identical(self, service, hw0_ids):
        first, _ = service.pairwise_analysis(hw0_ids)
        second, _ = service.pairwise_analysis(hw0_ids)
        assert first == second

    @pytest.mark.parametrize("options, expected_count", [
        (None, 1),
        ({"include_patterns": [r"\.c$"]}, 0),
        ({"exclude_patterns": [r"\.c$"]}, 1),
        ({"exclude_patterns": [r"\.py$"]}, 0),
    ])
    def test_include_exclude(self, service, submissions_root, hw0_ids, options, expected_count):
        if options is not None:
            write_options(submissions_root, options)

        results, pending = service.pairwise_analysis(hw0_ids[:2], requester=REQUESTER)

        assert pending == 0
        assert len(results) == 1
        assert len(results[0].similarities) == expected_count
        assert len(results[0].skipped_files) == 1 - expected_count
        if expected_count == 0:
            assert results[0].skipped_files == ["submission.py"]

        if options is None:
            assert results[0].options is None
        else:
            assert results[0].options is not None

    def test_template_files_are_skipped(self, service, submissions_root):
        starter = "# Do not change this file.\nLIMIT = 10\n"
        (submissions_root / COURSE / ASSIGNMENT).mkdir(parents=True)
        (submissions_root / COURSE / ASSIGNMENT / "starter.py").write_text(starter, encoding="utf-8")
        write_options(submissions_root, {"template_files": [{"path": "starter.py"}]})

        ids = [
            write_submission(submissions_root, {"starter.py": starter, "main.py": SUBMISSION_PY}, 100),
            write_submission(submissions_root, {"starter.py": starter, "main.py": SUBMISSION_PY}, 200),
        ]

        results, _ = service.pairwise_analysis(ids)

        assert list(results[0].similarities) == ["main.py"]
        assert results[0].skipped_files == ["starter.py"]

    def test_key_symmetry(self, service, metrics, hw0_ids):
        forward, _ = service.pairwise_analysis([hw0_ids[0], hw0_ids[1]])
        backward, _ = service.pairwise_analysis([hw0_ids[1], hw0_ids[0]])

        assert forward == backward
        assert forward[0].submission_ids == PairwiseKey.of(hw0_ids[1], hw0_ids[0])
        assert len(metrics.get_course_metrics()) == 1

    def test_duplicates_and_single_id(self, service, hw0_ids):
        assert service.pairwise_analysis([hw0_ids[0]]) == ([], 0)
        assert service.pairwise_analysis([]) == ([], 0)

        results, _ = service.pairwise_analysis([hw0_ids[0], hw0_ids[1], hw0_ids[0]])
        assert len(results) == 1

    def test_no_wait(self, service, metrics, hw0_ids):
        results, pending = service.pairwise_analysis(hw0_ids, wait=False)
        assert results == []
        assert pending == 3

        # A blocking call picks up (or waits for) the background work without recomputing it.
        results, pending = service.pairwise_analysis(hw0_ids, wait=True)
        assert len(results) == 3
        assert pending == 0
        assert len(metrics.get_course_metrics()) == 3

        results, pending = service.pairwise_analysis(hw0_ids, wait=False)
        assert len(results) == 3
        assert pending == 0

    def test_close_drops_queued_work(self, cache, source, submissions_root):
        ids = distinct_submissions(submissions_root, 4)
        engine = CountingEngine(delay=0.2)
        service = AnalysisService(cache, source, [engine], config=Config(engines=["fake"], max_workers=1))

        _, pending = service.pairwise_analysis(ids, wait=False)
        assert pending == 6

        start = time.monotonic()
        service.close(cancel_pending=True)

        # Only work that had already started ran to completion.
        assert time.monotonic() - start < 6 * 0.2
        assert cache.pairwise_count() < 6
        assert engine.calls == cache.pairwise_count()

        # Dropped keys were never claimed.
        for key in enumerate_pairwise_keys(ids):
            claim = cache.claim("pairwise", str(key))
            assert claim is not None
            cache.release(claim)

    def test_concurrent_requests_compute_once(self, cache, source, metrics, config, submissions_root):
        ids = distinct_submissions(submissions_root)
        engine = CountingEngine()
        service = AnalysisService(cache, source, [engine], metrics=metrics, config=config)

        barrier = threading.Barrier(3)
        outputs = []

        def request():
            barrier.wait()
            outputs.append(service.pairwise_analysis(ids))

        threads = [threading.Thread(target=request) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        service.close()

        assert engine.calls == 3
        assert len(metrics.get_course_metrics()) == 3
        assert len(outputs) == 3
        for results, pending in outputs:
            assert pending == 0
            assert [r.submission_ids for r in results] == [r.submission_ids for r in outputs[0][0]]

    def test_partial_failure(self, service, cache, hw0_ids):
        ghost = f"{COURSE}::{ASSIGNMENT}::ghost@test.edulinq.org::123"

        with pytest.raises(IncompleteAnalysisError) as info:
            service.pairwise_analysis([hw0_ids[0], hw0_ids[1], ghost])

        error = info.value
        assert len(error.results) == 1
        assert error.results[0].submission_ids == PairwiseKey.of(hw0_ids[0], hw0_ids[1])
        assert len(error.failures) == 2
        for key, failure in error.failures.items():
            assert isinstance(failure, FetchError)
            assert failure.context["key"] == key

        # Claims of the failed keys were released.
        for key in error.failures:
            claim = cache.claim("pairwise", key)
            assert claim is not None
            cache.release(claim)

    def test_engine_failure_is_not_cached(self, cache, source, metrics, config, submissions_root):
        ids = distinct_submissions(submissions_root, 2)
        service = AnalysisService(cache, source, [TimingOutEngine(), FakeEngine()], metrics=metrics, config=config)

        for attempt in (1, 2):
            results, pending = service.pairwise_analysis(ids)

            assert pending == 0
            analysis = results[0]
            assert [sim.tool for sim in analysis.similarities["submission.py"]] == ["fake"]
            assert analysis.engine_failures == {"submission.py": ["slow"]}
            assert not analysis.is_complete()
            assert cache.pairwise_count() == 0

            # Every request retries the comparison.
            assert len(metrics.get_course_metrics()) == attempt

        service.close()

    def test_every_engine_failing_is_reported(self, cache, source, config, submissions_root):
        ids = distinct_submissions(submissions_root, 2)
        service = AnalysisService(cache, source, [TimingOutEngine()], config=config)

        results, _ = service.pairwise_analysis(ids)
        service.close()

        assert results[0].similarities == {}
        assert results[0].engine_failures == {"submission.py": ["slow"]}
        assert cache.pairwise_count() == 0

    def test_invalid_options(self, service, submissions_root, hw0_ids):
        write_options(submissions_root, {"include_patterns": ["("]})

        with pytest.raises(IncompleteAnalysisError) as info:
            service.pairwise_analysis(hw0_ids[:2])

        failure = list(info.value.failures.values())[0]
        assert isinstance(failure, ConfigError)
        assert "Failed to compile include pattern" in str(failure)
        assert failure.context["course"] == COURSE
        assert failure.context["assignment"] == ASSIGNMENT

    def test_cache_failure_propagates(self, source, config, hw0_ids):
        service = AnalysisService(BrokenCache(), source, [FakeEngine()], config=config)
        with pytest.raises(CacheError, match="database is gone"):
            service.pairwise_analysis(hw0_ids)
        service.close()

    def test_metrics_failure_is_ignored(self, cache, source, config, hw0_ids):
        service = AnalysisService(cache, source, [FakeEngine()], metrics=FailingRecorder(), config=config)
        results, pending = service.pairwise_analysis(hw0_ids)
        service.close()

        assert len(results) == 3
        assert pending == 0

    def test_engines_are_required(self, cache, source, config):
        with pytest.raises(ConfigError):
            AnalysisService(cache, source, [], config=config)


class TestIndividualAnalysis:
    """Test cases for individual analysis through the service."""

    @pytest.fixture
    def history(self, submissions_root):
        first = "\n".join(f"x{i} = {i}" for i in range(10)) + "\n"
        second = "\n\n".join(f"x{i} = {i}" for i in range(20)) + "\n"
        return [
            write_submission(submissions_root, {"main.py": first}, 1000, score=1.0),
            write_submission(submissions_root, {"main.py": second, "util.py": "A = 1\n\nB = 2\n"}, 1120, score=5.0),
        ]

    def test_first_submission(self, service, history):
        results, pending = service.individual_analysis([history[0]], requester=REQUESTER)

        assert pending == 0
        analysis = results[0]
        assert analysis.submission_id == history[0]
        assert analysis.score == 1.0
        assert analysis.lines_of_code == 10
        assert [(f.filename, f.lines_of_code) for f in analysis.files] == [("main.py", 10)]
        assert analysis.submission_time_delta == 0
        assert analysis.lines_of_code_delta == 0
        assert analysis.score_delta == 0
        assert analysis.lines_of_code_velocity == 0
        assert analysis.score_velocity == 0

    def test_deltas_and_velocities(self, service, history):
        results, _ = service.individual_analysis([history[1]])

        analysis = results[0]
        assert analysis.lines_of_code == 22
        assert [(f.filename, f.lines_of_code) for f in analysis.files] == [("main.py", 20), ("util.py", 2)]
        assert analysis.submission_time_delta == 120
        assert analysis.lines_of_code_delta == 12
        assert analysis.score_delta == 4
        assert analysis.lines_of_code_velocity == pytest.approx(6.0)
        assert analysis.score_velocity == pytest.approx(2.0)
        assert analysis.submission_start_time.timestamp() == 1120

    def test_cached_and_recorded(self, service, metrics, history):
        first, _ = service.individual_analysis(history, requester=REQUESTER)
        second, _ = service.individual_analysis(list(reversed(history)), requester=REQUESTER)

        assert [a.submission_id for a in first] == history
        assert [a.submission_id for a in second] == list(reversed(history))
        assert second[0] == first[1]

        recorded = metrics.get_course_metrics(COURSE)
        assert len(recorded) == 2
        assert all(metric.attributes == {ATTRIBUTE_KEY_ANALYSIS: "individual"} for metric in recorded)

    def test_excluded_files(self, service, submissions_root, history):
        write_options(submissions_root, {"exclude_patterns": [r"^util\.py$"]})

        results, _ = service.individual_analysis([history[1]])

        assert results[0].lines_of_code == 20
        assert results[0].skipped_files == ["util.py"]

    def test_no_wait(self, service, history):
        results, pending = service.individual_analysis(history, wait=False)
        assert results == []
        assert pending == 2

        results, pending = service.individual_analysis(history)
        assert len(results) == 2
        assert pending == 0

    def test_unknown_submission(self, service):
        with pytest.raises(IncompleteAnalysisError) as info:
            service.individual_analysis([f"{COURSE}::{ASSIGNMENT}::nobody::1"])

        assert info.value.results == []
        assert len(info.value.failures) == 1
