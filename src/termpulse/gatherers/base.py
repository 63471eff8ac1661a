"""Gatherer interfaces implemented by backend clients and wrappers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from termpulse.model import MetricSeries, Query


class Gatherer(ABC):
    """Abstract interface for fetching metrics from a backend.

    This abstraction allows for:
    - Swapping backends (Prometheus, Graphite, InfluxDB, synthetic)
    - Wrapping any backend with timeout and retry logic
    - Testing with mock implementations
    """

    @abstractmethod
    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        """Gather the value of a query at one point in time.

        Args:
            query: Query to run.
            at: Evaluation instant.

        Returns:
            Series with (usually) one point each.
        """
        ...

    @abstractmethod
    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        """Gather the values of a query over a time range.

        Args:
            query: Query to run.
            start: Range start.
            end: Range end.
            step: Resolution in seconds.

        Returns:
            Series whose points are ordered by timestamp.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""


class IdentifiableGatherer(Gatherer):
    """A gatherer bound to one datasource ID, used for cache keying."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Datasource ID this gatherer serves."""
        ...
