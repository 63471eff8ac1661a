"""Query execution with caching, bounded concurrency and retries.

QueryExecutor runs one query end to end:
cache lookup -> semaphore admission -> retry loop -> cache population.

ParallelQueryExecutor fans a batch of widget queries out to the executor and
collects every outcome, success or error, keyed by query ID.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Sequence

from termpulse.cache import MetricCache, make_cache_key
from termpulse.config import ExecutorConfig
from termpulse.gatherers.base import IdentifiableGatherer
from termpulse.model import MetricSeries, Query, TimeRange
from termpulse.resilience import RateLimitTimeoutError, RetryPolicy

logger = logging.getLogger(__name__)


# =============================================================================
# Execution metrics
# =============================================================================


@dataclass(frozen=True)
class ExecutionStats:
    """Executor outcome counters."""

    total_queries: int
    cache_hits: int
    errors: int
    successes: int


class ExecutionMetrics:
    """Tracks query execution outcomes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_queries = 0
        self._cache_hits = 0
        self._errors = 0
        self._successes = 0

    def record_cache_hit(self) -> None:
        with self._lock:
            self._total_queries += 1
            self._cache_hits += 1

    def record_error(self, error: BaseException) -> None:
        with self._lock:
            self._total_queries += 1
            self._errors += 1

    def record_success(self) -> None:
        with self._lock:
            self._total_queries += 1
            self._successes += 1

    def stats(self) -> ExecutionStats:
        with self._lock:
            return ExecutionStats(
                total_queries=self._total_queries,
                cache_hits=self._cache_hits,
                errors=self._errors,
                successes=self._successes,
            )


# =============================================================================
# QueryExecutor
# =============================================================================


class QueryExecutor:
    """Executes metric queries under a deadline and a concurrency limit."""

    def __init__(
        self,
        cache: MetricCache | None = None,
        config: ExecutorConfig | None = None,
    ):
        """Initialize the executor.

        Args:
            cache: Shared metric cache. None disables caching.
            config: Timeout, concurrency and retry settings.
        """
        self.config = config or ExecutorConfig()
        self.cache = cache
        self.metrics = ExecutionMetrics()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_queries)
        self._retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.backoff_unit,
            delay_exponent=2.0,
            max_delay=self.config.query_timeout,
        )

    async def execute_query(
        self,
        gatherer: IdentifiableGatherer,
        query: Query,
        time_range: TimeRange,
        step: float | None = None,
    ) -> list[MetricSeries]:
        """Execute one query, serving it from cache when possible.

        Instant ranges run a single query at the range end; other ranges run
        a range query with the given step.

        Args:
            gatherer: Gatherer bound to the query's datasource.
            query: Query to execute.
            time_range: Queried range.
            step: Range resolution in seconds; defaults to the configured step.

        Returns:
            Gathered series.

        Raises:
            RateLimitTimeoutError: If no concurrency slot freed up in time.
            RetriesExhaustedError: If every attempt failed.
            TimeoutError: If the deadline expired while querying.
        """
        key = make_cache_key(gatherer.id, query.expression, time_range)
        if self.cache is not None:
            cached, found = self.cache.get(key)
            if found:
                self.metrics.record_cache_hit()
                return cached

        try:
            result = await self._execute_admitted(gatherer, query, time_range, step)
        except (Exception, asyncio.CancelledError) as e:
            self.metrics.record_error(e)
            raise

        if self.cache is not None:
            self.cache.set(key, result)
        self.metrics.record_success()
        return result

    async def _execute_admitted(
        self,
        gatherer: IdentifiableGatherer,
        query: Query,
        time_range: TimeRange,
        step: float | None,
    ) -> list[MetricSeries]:
        deadline = asyncio.get_running_loop().time() + self.config.query_timeout

        try:
            async with asyncio.timeout_at(deadline):
                await self._semaphore.acquire()
        except TimeoutError as e:
            raise RateLimitTimeoutError(
                "query execution timeout waiting for rate limit"
            ) from e

        try:
            async with asyncio.timeout_at(deadline):
                return await self._retry_policy.execute(
                    lambda: self._run(gatherer, query, time_range, step),
                    description=f"query {query.expression!r} on {gatherer.id}",
                )
        finally:
            self._semaphore.release()

    async def _run(
        self,
        gatherer: IdentifiableGatherer,
        query: Query,
        time_range: TimeRange,
        step: float | None,
    ) -> list[MetricSeries]:
        if time_range.is_instant:
            return await gatherer.gather_single(query, time_range.end)
        return await gatherer.gather_range(
            query,
            time_range.start,
            time_range.end,
            step or self.config.default_step,
        )


# =============================================================================
# ParallelQueryExecutor
# =============================================================================


@dataclass(frozen=True)
class WidgetQuery:
    """One query of a batch, identified by a caller chosen ID."""

    id: str
    gatherer: IdentifiableGatherer
    query: Query
    time_range: TimeRange
    step: float | None = None


@dataclass(frozen=True)
class WidgetResult:
    """Outcome of one batch query: metrics or an error, never both."""

    id: str
    metrics: list[MetricSeries] | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


_DONE = object()


class ParallelQueryExecutor:
    """Executes a batch of queries concurrently and collects their results."""

    def __init__(self, executor: QueryExecutor, task_timeout: float | None = None):
        """Initialize the parallel executor.

        Args:
            executor: Single query executor shared by every task.
            task_timeout: Per task deadline; defaults to the query timeout.
        """
        self.executor = executor
        self.task_timeout = (
            task_timeout if task_timeout is not None else executor.config.query_timeout
        )

    async def execute_widget_queries(
        self,
        queries: Sequence[WidgetQuery],
    ) -> dict[str, WidgetResult]:
        """Run every query concurrently.

        Each task catches its own failures and reports them as a WidgetResult
        error, so one failing query never affects another's entry.

        Returns:
            Results keyed by WidgetQuery.id.
        """
        if not queries:
            return {}

        # Sized so no worker ever blocks on put
        results_queue: asyncio.Queue = asyncio.Queue(maxsize=len(queries) + 1)
        workers = [asyncio.create_task(self._worker(q, results_queue)) for q in queries]

        async def close_when_done() -> None:
            await asyncio.gather(*workers, return_exceptions=True)
            results_queue.put_nowait(_DONE)

        closer = asyncio.create_task(close_when_done())

        results: dict[str, WidgetResult] = {}
        try:
            while (item := await results_queue.get()) is not _DONE:
                results[item.id] = item
        finally:
            # Parent cancelled mid-drain: pending workers drop their results
            pending = [task for task in (*workers, closer) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return results

    async def _worker(self, widget_query: WidgetQuery, out: asyncio.Queue) -> None:
        try:
            async with asyncio.timeout(self.task_timeout):
                metrics = await self.executor.execute_query(
                    widget_query.gatherer,
                    widget_query.query,
                    widget_query.time_range,
                    widget_query.step,
                )
            result = WidgetResult(id=widget_query.id, metrics=metrics)
        except Exception as e:
            logger.debug(f"Query {widget_query.id} failed: {e}")
            result = WidgetResult(id=widget_query.id, error=e)

        out.put_nowait(result)
