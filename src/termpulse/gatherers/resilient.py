"""Timeout and retry management around a backend gatherer.

A ResilientGatherer bounds every call with a clamped timeout, retries
transient backend errors with linear backoff, never retries deadline or
cancellation errors, and keeps outcome counters for telemetry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Coroutine

from termpulse.config import TimeoutConfig
from termpulse.gatherers.base import Gatherer, IdentifiableGatherer
from termpulse.model import MetricSeries, Query
from termpulse.resilience import RetriesExhaustedError, RetryPolicy

logger = logging.getLogger(__name__)

RANGE_SCALE_UNIT = 3600.0  # Range timeouts scale per hour of queried data


@dataclass(frozen=True)
class GathererStats:
    """Snapshot of a gatherer's outcome counters and timings (seconds)."""

    total_queries: int
    successful_queries: int
    failed_queries: int
    timeout_queries: int
    average_exec_time: float
    last_execution_time: float
    current_timeout: float


class ResilientGatherer(IdentifiableGatherer):
    """Wraps a backend gatherer with bounded timeouts, retries and counters.

    Instances hold a lock and are always shared by reference.
    """

    def __init__(
        self,
        gatherer: Gatherer,
        datasource_id: str,
        config: TimeoutConfig | None = None,
    ):
        """Initialize the wrapper.

        Args:
            gatherer: Backend gatherer to delegate to.
            datasource_id: Datasource ID served by this gatherer.
            config: Timeout bounds and retry budget.
        """
        self.config = config or TimeoutConfig()
        self._gatherer = gatherer
        self._id = datasource_id

        self._lock = threading.Lock()
        self._timeout = self.config.default_timeout

        # Statistics
        self._total_queries = 0
        self._successful_queries = 0
        self._failed_queries = 0
        self._timeout_queries = 0
        self._average_exec_time = 0.0
        self._last_execution_time = 0.0

        self._single_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.single_backoff_step,
            delay_exponent=1.0,
            max_delay=self.config.max_timeout,
        )
        self._range_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.range_backoff_step,
            delay_exponent=1.0,
            max_delay=self.config.max_timeout,
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def backend(self) -> Gatherer:
        """The wrapped backend gatherer."""
        return self._gatherer

    # -------------------------------------------------------------------------
    # Timeouts
    # -------------------------------------------------------------------------

    def set_timeout(self, duration: float) -> None:
        """Set the per-call timeout, clamped to the configured bounds.

        Non-positive durations select the default timeout.
        """
        if duration <= 0:
            duration = self.config.default_timeout
        duration = max(self.config.min_timeout, min(self.config.max_timeout, duration))

        with self._lock:
            self._timeout = duration

    def timeout_duration(self) -> float:
        """Get the current per-call timeout in seconds."""
        with self._lock:
            return self._timeout

    def calculate_range_timeout(self, start: datetime, end: datetime) -> float:
        """Scale the timeout by range size for ranges longer than one hour.

        Returns:
            Timeout in seconds, capped at the configured maximum.
        """
        base_timeout = self.timeout_duration()
        scale_factor = (end - start).total_seconds() / RANGE_SCALE_UNIT
        if scale_factor > 1:
            return min(base_timeout * scale_factor, self.config.max_timeout)
        return base_timeout

    # -------------------------------------------------------------------------
    # Gathering
    # -------------------------------------------------------------------------

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        return await self._gather(
            lambda: self._gatherer.gather_single(query, at),
            timeout=self.timeout_duration(),
            policy=self._single_policy,
            description=f"{self._id} query {query.expression!r}",
        )

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        return await self._gather(
            lambda: self._gatherer.gather_range(query, start, end, step),
            timeout=self.calculate_range_timeout(start, end),
            policy=self._range_policy,
            description=f"{self._id} range query {query.expression!r}",
        )

    async def _gather(
        self,
        func: Callable[[], Coroutine[Any, Any, list[MetricSeries]]],
        timeout: float,
        policy: RetryPolicy,
        description: str,
    ) -> list[MetricSeries]:
        started = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                result = await policy.execute(func, description)
        except RetriesExhaustedError:
            self._mark_failure()
            raise
        except (TimeoutError, asyncio.CancelledError) as e:
            self._mark_timeout()
            logger.warning(f"{description}: gave up on deadline or cancellation ({type(e).__name__})")
            raise
        else:
            self._mark_success()
            return result
        finally:
            self._record_execution_time(time.monotonic() - started)

    async def aclose(self) -> None:
        await self._gatherer.aclose()

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _mark_success(self) -> None:
        with self._lock:
            self._total_queries += 1
            self._successful_queries += 1

    def _mark_failure(self) -> None:
        with self._lock:
            self._total_queries += 1
            self._failed_queries += 1

    def _mark_timeout(self) -> None:
        with self._lock:
            self._total_queries += 1
            self._timeout_queries += 1

    def _record_execution_time(self, duration: float) -> None:
        # Blends only the previous value and the newest sample; not a true mean.
        with self._lock:
            self._last_execution_time = duration
            if self._successful_queries > 0:
                self._average_exec_time = (self._average_exec_time + duration) / 2
            else:
                self._average_exec_time = duration

    def stats(self) -> GathererStats:
        """Get a consistent snapshot of the counters."""
        with self._lock:
            return GathererStats(
                total_queries=self._total_queries,
                successful_queries=self._successful_queries,
                failed_queries=self._failed_queries,
                timeout_queries=self._timeout_queries,
                average_exec_time=self._average_exec_time,
                last_execution_time=self._last_execution_time,
                current_timeout=self._timeout,
            )
