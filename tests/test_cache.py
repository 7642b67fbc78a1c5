"""Tests for the analysis caches and their claims."""

import threading
import time
from datetime import datetime, timezone

import pytest
import redis

from conftest import FakeRedis
from plag_engine.core.cache import KIND_INDIVIDUAL, KIND_PAIRWISE, MemoryAnalysisCache, RedisAnalysisCache
from plag_engine.core.errors import CacheError
from plag_engine.core.options import AnalysisOptions
from plag_engine.core.types import FileSimilarity, IndividualAnalysis, PairwiseAnalysis, PairwiseKey


@pytest.fixture(params=["memory", "redis"])
def any_cache(request):
    if request.param == "memory":
        return MemoryAnalysisCache()
    return RedisAnalysisCache(client=FakeRedis(), poll_interval=0.01)


def pairwise_record(first="s1", second="s2", score=0.5):
    options = AnalysisOptions(exclude_patterns=[r"\.txt$"])
    options.validate_options()
    sims = {"main.py": [FileSimilarity(filename="main.py", tool="fake", version="0.0.1", score=score)]}
    return PairwiseAnalysis.new(PairwiseKey.of(first, second), options, sims, [("extra.py", "")], ["notes.txt"])


def individual_record(submission_id="s1"):
    return IndividualAnalysis(
        submission_id=submission_id,
        submission_start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        score=3.0,
        lines_of_code=12,
    )


class TestRecords:
    """Test cases for storing and reading analyses."""

    def test_pairwise_round_trip(self, any_cache):
        record = pairwise_record()
        any_cache.save_pairwise([record])

        found = any_cache.get_pairwise([PairwiseKey.of("s2", "s1"), PairwiseKey.of("s1", "s3")])

        assert list(found) == [PairwiseKey.of("s1", "s2")]
        assert found[PairwiseKey.of("s1", "s2")] == record

    def test_individual_round_trip(self, any_cache):
        record = individual_record()
        any_cache.save_individual([record])

        found = any_cache.get_individual(["s1", "s2"])

        assert list(found) == ["s1"]
        assert found["s1"] == record

    def test_overwrite(self, any_cache):
        any_cache.save_pairwise([pairwise_record(score=0.1)])
        any_cache.save_pairwise([pairwise_record(score=0.9)])

        found = any_cache.get_pairwise([PairwiseKey.of("s1", "s2")])
        assert found[PairwiseKey.of("s1", "s2")].total_mean_similarity == pytest.approx(0.9)

    def test_returned_records_are_copies(self, any_cache):
        any_cache.save_individual([individual_record()])

        found = any_cache.get_individual(["s1"])
        found["s1"].score = 100.0

        assert any_cache.get_individual(["s1"])["s1"].score == 3.0

    def test_clear(self, any_cache):
        any_cache.save_pairwise([pairwise_record()])
        any_cache.save_individual([individual_record()])

        any_cache.clear()

        assert any_cache.get_pairwise([PairwiseKey.of("s1", "s2")]) == {}
        assert any_cache.get_individual(["s1"]) == {}


class TestClaims:
    """Test cases for exclusive computation claims."""

    def test_claim_is_exclusive(self, any_cache):
        claim = any_cache.claim(KIND_PAIRWISE, "s1||s2")
        assert claim is not None
        assert any_cache.claim(KIND_PAIRWISE, "s1||s2") is None

        # Claims are per kind and key.
        assert any_cache.claim(KIND_INDIVIDUAL, "s1||s2") is not None
        assert any_cache.claim(KIND_PAIRWISE, "s1||s3") is not None

        any_cache.release(claim)
        assert any_cache.claim(KIND_PAIRWISE, "s1||s2") is not None

    def test_release_needs_matching_token(self, any_cache):
        first = any_cache.claim(KIND_PAIRWISE, "k")
        any_cache.release(first)
        second = any_cache.claim(KIND_PAIRWISE, "k")

        # A stale claim cannot release someone else's.
        any_cache.release(first)
        assert any_cache.claim(KIND_PAIRWISE, "k") is None

        any_cache.release(second)
        assert any_cache.claim(KIND_PAIRWISE, "k") is not None

    def test_wait_for_release(self, any_cache):
        claim = any_cache.claim(KIND_PAIRWISE, "k")

        timer = threading.Timer(0.1, any_cache.release, args=(claim,))
        timer.start()
        try:
            assert any_cache.wait_for_release(KIND_PAIRWISE, "k", timeout=5.0)
        finally:
            timer.join()

    def test_wait_for_release_timeout(self, any_cache):
        any_cache.claim(KIND_PAIRWISE, "k")

        start = time.monotonic()
        assert not any_cache.wait_for_release(KIND_PAIRWISE, "k", timeout=0.1)
        assert time.monotonic() - start >= 0.1

    def test_wait_without_claim(self, any_cache):
        assert any_cache.wait_for_release(KIND_PAIRWISE, "k", timeout=0.0)

    def test_only_one_thread_wins(self, any_cache):
        barrier = threading.Barrier(8)
        winners = []

        def contend():
            barrier.wait()
            if any_cache.claim(KIND_PAIRWISE, "contended") is not None:
                winners.append(threading.get_ident())

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1


class TestRedisAnalysisCache:
    """Test cases specific to the Redis-backed cache."""

    def test_shared_server(self, fake_redis):
        first = RedisAnalysisCache(client=fake_redis)
        second = RedisAnalysisCache(client=fake_redis)

        first.save_pairwise([pairwise_record()])
        assert PairwiseKey.of("s1", "s2") in second.get_pairwise([PairwiseKey.of("s1", "s2")])

        claim = first.claim(KIND_PAIRWISE, "k")
        assert second.claim(KIND_PAIRWISE, "k") is None
        first.release(claim)
        assert second.claim(KIND_PAIRWISE, "k") is not None

    def test_key_layout(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis, prefix="test")
        cache.save_individual([individual_record()])
        cache.claim(KIND_PAIRWISE, "s1||s2")

        assert "test:individual:s1" in fake_redis.values
        assert "test:lock:pairwise:s1||s2" in fake_redis.values

    def test_claim_sets_expiry(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis, lock_expire=60)
        cache.claim(KIND_PAIRWISE, "k")

        assert fake_redis.expires[cache._lock_name(KIND_PAIRWISE, "k")] == 60

    def test_expired_claim_can_be_taken(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis, lock_expire=60)
        assert cache.claim(KIND_PAIRWISE, "k") is not None
        assert cache.claim(KIND_PAIRWISE, "k") is None

        fake_redis.advance(61)

        assert cache.claim(KIND_PAIRWISE, "k") is not None

    def test_expired_holder_cannot_release_newer_claim(self, fake_redis):
        first = RedisAnalysisCache(client=fake_redis, lock_expire=60)
        second = RedisAnalysisCache(client=fake_redis, lock_expire=60)

        stale = first.claim(KIND_PAIRWISE, "k")
        fake_redis.advance(61)
        current = second.claim(KIND_PAIRWISE, "k")
        assert current is not None

        # The first holder finishes late; the newer claim must survive.
        first.release(stale)
        assert first.claim(KIND_PAIRWISE, "k") is None
        assert not first.wait_for_release(KIND_PAIRWISE, "k", timeout=0.0)

        second.release(current)
        assert first.wait_for_release(KIND_PAIRWISE, "k", timeout=0.0)

    def test_clear_keeps_claims(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis)
        cache.save_pairwise([pairwise_record()])
        cache.claim(KIND_PAIRWISE, "k")

        cache.clear()

        assert cache.get_pairwise([PairwiseKey.of("s1", "s2")]) == {}
        assert cache.claim(KIND_PAIRWISE, "k") is None

    def test_corrupt_record(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis)
        cache.save_individual([individual_record()])
        fake_redis.set(cache._record_name(KIND_INDIVIDUAL, "s1"), "{broken")

        with pytest.raises(CacheError, match="Unable to read cached record"):
            cache.get_individual(["s1"])

    def test_server_errors_become_cache_errors(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis)
        fake_redis.error = redis.ConnectionError("Connection refused")

        with pytest.raises(CacheError, match="Unable to read cached records"):
            cache.get_pairwise([PairwiseKey.of("s1", "s2")])
        with pytest.raises(CacheError, match="Unable to write cached records"):
            cache.save_individual([individual_record()])
        with pytest.raises(CacheError, match="Unable to claim key"):
            cache.claim(KIND_PAIRWISE, "k")

    def test_empty_lookup_skips_server(self, fake_redis):
        cache = RedisAnalysisCache(client=fake_redis)

        assert cache.get_pairwise([]) == {}
        assert fake_redis.calls == []
