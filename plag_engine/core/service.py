"""
Analysis service: the entry point for pairwise and individual analyses.

Every request first reads the cache in bulk. Each miss is computed by exactly
one caller system-wide: the one that wins the cache claim for that key. Other
callers either wait for the winner (blocking requests) or report the key as
pending (non-blocking requests).
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from .cache import KIND_INDIVIDUAL, KIND_PAIRWISE, AnalysisCache
from .config import Config
from .engines.base import SimilarityEngine
from .errors import AnalysisError, CacheError, ConfigError, IncompleteAnalysisError
from .individual import compute_individual_analysis
from .log import base_logger
from .metrics import MetricsRecorder, safe_record
from .pairwise import TemplateStager, compute_pairwise_analysis, enumerate_pairwise_keys
from .submissions import SubmissionSource
from .types import IndividualAnalysis, PairwiseAnalysis

logger = base_logger.getChild('service')


class _Countdown:
    """Runs a callback once a fixed number of futures have finished."""

    def __init__(self, count: int, callback: Callable[[], None]):
        self._remaining = count
        self._callback = callback
        self._lock = threading.Lock()

    def done(self, _future: Future):
        with self._lock:
            self._remaining -= 1
            finished = self._remaining == 0
        if finished:
            self._callback()


class AnalysisService:
    """Pairwise (plagiarism) and individual (trend) analysis with caching and claims."""

    def __init__(
        self,
        cache: AnalysisCache,
        source: SubmissionSource,
        engines: Sequence[SimilarityEngine],
        metrics: Optional[MetricsRecorder] = None,
        config: Optional[Config] = None,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """
        Initialize the analysis service.

        Args:
            cache: Persistence collaborator holding analyses and claims
            source: Submission-content collaborator
            engines: Ordered engines run on every matched file
            metrics: Recorder for one metric per computed analysis
            config: Configuration object (uses defaults if not provided)
            executor: Thread pool for computations (built from config when omitted)
        """
        if not engines:
            raise ConfigError("At least one similarity engine is required.")

        self.config = config or Config()
        self.cache = cache
        self.source = source
        self.engines: Tuple[SimilarityEngine, ...] = tuple(engines)
        self.metrics = metrics
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="plag-analysis"
        )

        logger.info(f"Analysis service ready with engines: {', '.join(e.name for e in self.engines)}")

    def pairwise_analysis(
        self,
        submission_ids: Sequence[str],
        wait: bool = True,
        requester: str = ""
    ) -> Tuple[List[PairwiseAnalysis], int]:
        """
        Compare every pair of the given submissions.

        Args:
            submission_ids: Submissions to compare (all unordered pairs are analyzed)
            wait: Block until every analysis is available
            requester: Email of the user the metrics are attributed to

        Returns:
            (analyses in pair order, number of analyses still pending)

        Raises:
            CacheError: if the cache cannot be read
            IncompleteAnalysisError: if wait is set and some pairs failed
        """
        keys = enumerate_pairwise_keys(submission_ids)
        logger.info(f"Pairwise analysis of {len(submission_ids)} submissions ({len(keys)} pairs), wait={wait}")

        return self._run(
            KIND_PAIRWISE,
            keys,
            self.cache.get_pairwise,
            self.cache.save_pairwise,
            lambda key, stager: compute_pairwise_analysis(key, self.source, self.engines, stager),
            wait,
            requester,
        )

    def individual_analysis(
        self,
        submission_ids: Sequence[str],
        wait: bool = True,
        requester: str = ""
    ) -> Tuple[List[IndividualAnalysis], int]:
        """
        Measure each submission against the author's previous one.

        Same caching, claim and wait semantics as pairwise_analysis().
        """
        keys = list(dict.fromkeys(submission_ids))
        logger.info(f"Individual analysis of {len(keys)} submissions, wait={wait}")

        return self._run(
            KIND_INDIVIDUAL,
            keys,
            self.cache.get_individual,
            self.cache.save_individual,
            lambda key, stager: compute_individual_analysis(key, self.source, stager),
            wait,
            requester,
        )

    def _run(self, kind, keys, lookup, save, compute, wait, requester):
        if not keys:
            return [], 0

        try:
            cached = lookup(keys)
        except CacheError as ex:
            ex.context.setdefault("kind", kind)
            raise

        misses = [key for key in keys if key not in cached]
        logger.debug(f"{kind}: {len(cached)} cached, {len(misses)} to compute")
        if not misses:
            return [cached[key] for key in keys], 0

        stager = TemplateStager(self.source)
        resolve = partial(self._resolve, kind, lookup=lookup, save=save, compute=compute,
                          stager=stager, requester=requester, blocking=wait)
        futures: Dict[Hashable, Future] = {key: self.executor.submit(resolve, key) for key in misses}

        if not wait:
            countdown = _Countdown(len(futures), stager.close)
            for key, future in futures.items():
                future.add_done_callback(partial(_log_background_failure, kind, key))
                future.add_done_callback(countdown.done)
            return [cached[key] for key in keys if key in cached], len(misses)

        results = dict(cached)
        failures = {}
        try:
            for key, future in futures.items():
                try:
                    results[key] = future.result()
                except AnalysisError as ex:
                    logger.error(f"{kind} analysis of {key} failed: {ex}")
                    failures[str(key)] = ex
        finally:
            stager.close()

        ordered = [results[key] for key in keys if key in results]
        if failures:
            raise IncompleteAnalysisError(
                f"{len(failures)} of {len(keys)} {kind} analyses failed",
                results=ordered,
                failures=failures,
                kind=kind,
            )

        return ordered, 0

    def _resolve(self, kind, key, lookup, save, compute, stager, requester, blocking):
        """Get one analysis: compute it under a claim, or wait for whoever holds the claim."""
        key_str = str(key)

        while True:
            claim = self.cache.claim(kind, key_str)
            if claim is None:
                if not blocking:
                    logger.debug(f"{kind} analysis of {key_str} is already in progress elsewhere")
                    return None

                if not self.cache.wait_for_release(kind, key_str, self.config.claim_wait_timeout):
                    raise CacheError("Timed out waiting for another computation", kind=kind, key=key_str)

                existing = lookup([key])
                if key in existing:
                    return existing[key]

                # The other computation failed, try to take over.
                continue

            try:
                existing = lookup([key])
                if key in existing:
                    return existing[key]

                start = time.monotonic()
                record, info = compute(key, stager)
                elapsed_ms = (time.monotonic() - start) * 1000.0

                safe_record(self.metrics, kind, info.course_id, info.assignment_id, requester, elapsed_ms)
                if not record.is_complete():
                    # Returned to this request only, the next request retries it.
                    logger.warning(f"Not caching {kind} analysis of {key_str}, some engines failed")
                    return record

                save([record])
                return record
            except AnalysisError as ex:
                ex.context.setdefault("key", key_str)
                raise
            finally:
                self.cache.release(claim)

    def close(self, cancel_pending: bool = False):
        """
        Shut down the thread pool if this service created it.

        Running computations always finish and are cached. With cancel_pending,
        queued computations that have not started are dropped instead of run;
        their keys stay uncached and are computed by a later request.
        """
        if self._owns_executor:
            self.executor.shutdown(wait=True, cancel_futures=cancel_pending)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _log_background_failure(kind: str, key, future: Future):
    if future.cancelled():
        logger.info(f"Background {kind} analysis of {key} was cancelled")
        return

    exception = future.exception()
    if exception is not None:
        logger.error(f"Background {kind} analysis of {key} failed: {exception}")
