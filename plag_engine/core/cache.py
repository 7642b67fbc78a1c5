"""
Analysis cache: durable storage for analyses plus exclusive per-key claims.

A claim guarantees at most one in-flight computation per key. Whoever holds it
computes, saves, and releases; everyone else waits for the release and reads
the saved record.
"""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Tuple

import redis
from pydantic import BaseModel, Field, ValidationError

from .errors import CacheError
from .log import base_logger
from .types import IndividualAnalysis, PairwiseAnalysis, PairwiseKey

logger = base_logger.getChild('cache')

KIND_PAIRWISE = "pairwise"
KIND_INDIVIDUAL = "individual"


class Claim(BaseModel):
    """An exclusive lease on computing one key."""

    kind: str
    key: str
    token: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created: float = Field(default_factory=time.time)


class AnalysisCache(ABC):
    """Persistence collaborator used by the analysis service."""

    @abstractmethod
    def get_pairwise(self, keys: Iterable[PairwiseKey]) -> Dict[PairwiseKey, PairwiseAnalysis]:
        """Bulk lookup. Keys without a record are absent from the result."""

    @abstractmethod
    def save_pairwise(self, records: Iterable[PairwiseAnalysis]):
        """Store records, replacing any existing record with the same key."""

    @abstractmethod
    def get_individual(self, submission_ids: Iterable[str]) -> Dict[str, IndividualAnalysis]:
        """Bulk lookup by submission id."""

    @abstractmethod
    def save_individual(self, records: Iterable[IndividualAnalysis]):
        """Store individual analyses."""

    @abstractmethod
    def claim(self, kind: str, key: str) -> Optional[Claim]:
        """Atomically claim a key. Returns None if someone else holds it."""

    @abstractmethod
    def release(self, claim: Claim):
        """Release a claim. Releasing a claim that is no longer held is a no-op."""

    @abstractmethod
    def wait_for_release(self, kind: str, key: str, timeout: float) -> bool:
        """Block until the key is unclaimed. False on timeout."""

    @abstractmethod
    def clear(self):
        """Drop every cached record (e.g. after analysis options changed)."""


class MemoryAnalysisCache(AnalysisCache):
    """Thread-safe in-process cache. Records are copied in and out."""

    def __init__(self):
        self._pairwise: Dict[PairwiseKey, PairwiseAnalysis] = {}
        self._individual: Dict[str, IndividualAnalysis] = {}
        self._claims: Dict[Tuple[str, str], Claim] = {}
        self._condition = threading.Condition()

    def get_pairwise(self, keys: Iterable[PairwiseKey]) -> Dict[PairwiseKey, PairwiseAnalysis]:
        with self._condition:
            return {
                key: self._pairwise[key].model_copy(deep=True)
                for key in keys if key in self._pairwise
            }

    def save_pairwise(self, records: Iterable[PairwiseAnalysis]):
        with self._condition:
            for record in records:
                self._pairwise[record.submission_ids] = record.model_copy(deep=True)

    def get_individual(self, submission_ids: Iterable[str]) -> Dict[str, IndividualAnalysis]:
        with self._condition:
            return {
                submission_id: self._individual[submission_id].model_copy(deep=True)
                for submission_id in submission_ids if submission_id in self._individual
            }

    def save_individual(self, records: Iterable[IndividualAnalysis]):
        with self._condition:
            for record in records:
                self._individual[record.submission_id] = record.model_copy(deep=True)

    def claim(self, kind: str, key: str) -> Optional[Claim]:
        with self._condition:
            if (kind, key) in self._claims:
                return None
            claim = Claim(kind=kind, key=key)
            self._claims[(kind, key)] = claim
            return claim

    def release(self, claim: Claim):
        with self._condition:
            current = self._claims.get((claim.kind, claim.key))
            if current is not None and current.token == claim.token:
                del self._claims[(claim.kind, claim.key)]
                self._condition.notify_all()

    def wait_for_release(self, kind: str, key: str, timeout: float) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: (kind, key) not in self._claims, timeout=timeout)

    def clear(self):
        with self._condition:
            self._pairwise.clear()
            self._individual.clear()

    def pairwise_count(self) -> int:
        with self._condition:
            return len(self._pairwise)


class RedisAnalysisCache(AnalysisCache):
    """
    Cache persisted in Redis, shared by every process pointed at the same server.

    Records are JSON strings under '<prefix>:<kind>:<key>'. Claims are
    'SET NX EX' locks under '<prefix>:lock:<kind>:<key>', so a crashed holder's
    claim expires on its own. Release compares the token and deletes in one
    Lua script, so a holder whose claim expired never removes a newer claim.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        client: Optional[redis.Redis] = None,
        prefix: str = "plag",
        lock_expire: int = 3600,
        poll_interval: float = 0.05
    ):
        """
        Initialize the Redis cache.

        Args:
            url: Redis connection URL (ignored when client is given)
            client: Pre-built Redis client
            prefix: Namespace of every key this cache writes
            lock_expire: Seconds after which an unreleased claim expires
            poll_interval: Seconds between checks while waiting for a claim
        """
        self.client = client if client is not None else redis.Redis.from_url(url)
        self.prefix = prefix
        self.lock_expire = lock_expire
        self.poll_interval = poll_interval

        logger.info(f"Using Redis analysis cache with prefix '{prefix}'")

    def _record_name(self, kind: str, key: str) -> str:
        return f"{self.prefix}:{kind}:{key}"

    def _lock_name(self, kind: str, key: str) -> str:
        return f"{self.prefix}:lock:{kind}:{key}"

    def _get(self, kind: str, keys: list, model) -> dict:
        if not keys:
            return {}

        try:
            values = self.client.mget([self._record_name(kind, str(key)) for key in keys])
        except redis.RedisError as ex:
            raise CacheError(f"Unable to read cached records: {ex}", kind=kind) from ex

        results = {}
        for key, value in zip(keys, values):
            if value is None:
                continue
            try:
                results[key] = model.model_validate_json(value)
            except ValidationError as ex:
                raise CacheError(f"Unable to read cached record: {ex}", kind=kind, key=str(key)) from ex
        return results

    def _save(self, kind: str, named_records: Iterable[Tuple[str, BaseModel]]):
        try:
            pipeline = self.client.pipeline()
            for key, record in named_records:
                pipeline.set(self._record_name(kind, key), record.model_dump_json())
            pipeline.execute()
        except redis.RedisError as ex:
            raise CacheError(f"Unable to write cached records: {ex}", kind=kind) from ex

    def get_pairwise(self, keys: Iterable[PairwiseKey]) -> Dict[PairwiseKey, PairwiseAnalysis]:
        return self._get(KIND_PAIRWISE, list(keys), PairwiseAnalysis)

    def save_pairwise(self, records: Iterable[PairwiseAnalysis]):
        self._save(KIND_PAIRWISE, [(str(record.submission_ids), record) for record in records])

    def get_individual(self, submission_ids: Iterable[str]) -> Dict[str, IndividualAnalysis]:
        return self._get(KIND_INDIVIDUAL, list(submission_ids), IndividualAnalysis)

    def save_individual(self, records: Iterable[IndividualAnalysis]):
        self._save(KIND_INDIVIDUAL, [(record.submission_id, record) for record in records])

    def claim(self, kind: str, key: str) -> Optional[Claim]:
        claim = Claim(kind=kind, key=key)
        try:
            acquired = self.client.set(self._lock_name(kind, key), claim.token, nx=True, ex=self.lock_expire)
        except redis.RedisError as ex:
            raise CacheError(f"Unable to claim key: {ex}", kind=kind, key=key) from ex

        if not acquired:
            return None

        logger.debug(f"Claimed {kind} key {key}")
        return claim

    def release(self, claim: Claim):
        try:
            released = self.client.eval(self.RELEASE_SCRIPT, 1, self._lock_name(claim.kind, claim.key), claim.token)
        except redis.RedisError as ex:
            raise CacheError(f"Unable to release claim: {ex}", kind=claim.kind, key=claim.key) from ex

        if not released:
            logger.warning(f"Claim on {claim.kind} key {claim.key} was no longer held when released")

    def wait_for_release(self, kind: str, key: str, timeout: float) -> bool:
        lock_name = self._lock_name(kind, key)
        end_time = time.time() + timeout
        try:
            while self.client.exists(lock_name):
                if time.time() >= end_time:
                    return False
                time.sleep(self.poll_interval)
        except redis.RedisError as ex:
            raise CacheError(f"Unable to check claim: {ex}", kind=kind, key=key) from ex
        return True

    def clear(self):
        try:
            for kind in (KIND_PAIRWISE, KIND_INDIVIDUAL):
                names = list(self.client.scan_iter(match=f"{self.prefix}:{kind}:*"))
                if names:
                    self.client.delete(*names)
        except redis.RedisError as ex:
            raise CacheError(f"Unable to clear cache: {ex}") from ex
