"""Synthetic gatherer producing deterministic wave data without I/O."""

from __future__ import annotations

import hashlib
import math
from datetime import datetime, timedelta

from termpulse.gatherers.base import Gatherer
from termpulse.model import MetricPoint, MetricSeries, Query

DEFAULT_PERIOD = 600.0  # seconds


class FakeGatherer(Gatherer):
    """Generates a sine wave per query expression.

    Each expression gets its own phase so different widgets show different
    values, but the same expression and timestamp always yield the same value.
    """

    def __init__(self, period: float = DEFAULT_PERIOD, amplitude: float = 50.0, offset: float = 50.0):
        self.period = period
        self.amplitude = amplitude
        self.offset = offset

    def value_at(self, expression: str, at: datetime) -> float:
        digest = hashlib.sha256(expression.encode("utf-8")).digest()
        phase = int.from_bytes(digest[:4], "big") / 2**32 * 2 * math.pi
        angle = 2 * math.pi * at.timestamp() / self.period + phase
        return self.offset + self.amplitude * math.sin(angle)

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        point = MetricPoint(value=self.value_at(query.expression, at), timestamp=at)
        return [MetricSeries(id=query.expression, labels={"source": "fake"}, points=[point])]

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        if step <= 0:
            raise ValueError(f"step must be positive, got {step}")

        points = []
        ts = start
        delta = timedelta(seconds=step)
        while ts <= end:
            points.append(MetricPoint(value=self.value_at(query.expression, ts), timestamp=ts))
            ts += delta

        return [MetricSeries(id=query.expression, labels={"source": "fake"}, points=points)]
