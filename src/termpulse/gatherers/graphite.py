"""Graphite render API gatherer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from termpulse.gatherers.http import HTTPGatherer
from termpulse.model import MetricPoint, MetricSeries, Query
from termpulse.resilience import BackendError

# Graphite has no instant queries; read a short window and keep the last point
SINGLE_LOOKBACK = timedelta(minutes=5)


class GraphiteGatherer(HTTPGatherer):
    """Gathers metrics from Graphite's /render endpoint in JSON format."""

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        series = await self._render(query, at - SINGLE_LOOKBACK, at)
        for s in series:
            s.points = s.points[-1:]
        return [s for s in series if s.points]

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        # Graphite picks its own resolution; step is ignored
        return await self._render(query, start, end)

    async def _render(self, query: Query, start: datetime, end: datetime) -> list[MetricSeries]:
        data = await self._get_json(
            "/render",
            {
                "target": query.expression,
                "from": str(int(start.timestamp())),
                "until": str(int(end.timestamp())),
                "format": "json",
            },
        )
        return parse_graphite_response(data)


def parse_graphite_response(data: Any) -> list[MetricSeries]:
    """Convert a Graphite render response into series, dropping null points.

    Raises:
        BackendError: If the body is not a list of targets.
    """
    if not isinstance(data, list):
        raise BackendError("malformed graphite response: expected a list of targets")

    series = []
    try:
        for target in data:
            points = [
                MetricPoint(
                    value=float(value),
                    timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                )
                for value, ts in target.get("datapoints", [])
                if value is not None
            ]
            points.sort(key=lambda p: p.timestamp)
            tags = {k: str(v) for k, v in target.get("tags", {}).items()}
            series.append(MetricSeries(id=target["target"], labels=tags, points=points))
    except (KeyError, TypeError, ValueError) as e:
        raise BackendError(f"malformed graphite target: {e}") from e

    return series
