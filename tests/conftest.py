"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from termpulse.gatherers.base import IdentifiableGatherer
from termpulse.model import MetricPoint, MetricSeries

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class StubGatherer(IdentifiableGatherer):
    """Gatherer returning scripted results.

    Each call pops the next item of ``results``: a list of series is returned,
    an exception is raised. Once exhausted, ``default`` is returned.
    """

    def __init__(self, ds_id: str = "stub", results=None, delay: float = 0.0, value: float = 1.0):
        self._id = ds_id
        self.results = list(results or [])
        self.delay = delay
        self.default = [MetricSeries(id="series", points=[MetricPoint(value=value, timestamp=T0)])]
        self.single_calls: list = []
        self.range_calls: list = []
        self.closed = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def calls(self) -> int:
        return len(self.single_calls) + len(self.range_calls)

    async def _next(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            item = self.results.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return self.default

    async def gather_single(self, query, at):
        self.single_calls.append((query, at))
        return await self._next()

    async def gather_range(self, query, start, end, step):
        self.range_calls.append((query, start, end, step))
        return await self._next()

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def stub_gatherer():
    """Factory for scripted gatherers."""
    return StubGatherer


@pytest.fixture
def clock():
    """A fake clock starting at 0."""
    return FakeClock()
