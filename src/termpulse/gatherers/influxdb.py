"""InfluxDB 1.x HTTP query gatherer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import aiohttp

from termpulse.gatherers.http import DEFAULT_HTTP_TIMEOUT, HTTPGatherer
from termpulse.model import InfluxDBDatasource, MetricPoint, MetricSeries, Query
from termpulse.resilience import BackendError


class InfluxDBGatherer(HTTPGatherer):
    """Gathers metrics through InfluxDB's /query endpoint.

    The query expression owns its time bounds; range results are clipped to
    the requested window.
    """

    def __init__(
        self,
        datasource: InfluxDBDatasource,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        super().__init__(datasource.address, http_timeout=http_timeout, session=session)
        self.database = datasource.database
        self.insecure = datasource.insecure
        self._auth = (
            aiohttp.BasicAuth(datasource.username, datasource.password)
            if datasource.username
            else None
        )

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        series = await self._query(query)
        for s in series:
            s.points = [p for p in s.points if p.timestamp <= at][-1:]
        return [s for s in series if s.points]

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        series = await self._query(query)
        for s in series:
            s.points = [p for p in s.points if start <= p.timestamp <= end]
        return series

    async def _query(self, query: Query) -> list[MetricSeries]:
        kwargs: dict[str, Any] = {}
        if self._auth is not None:
            kwargs["auth"] = self._auth
        if self.insecure:
            kwargs["ssl"] = False
        data = await self._get_json(
            "/query",
            {"db": self.database, "q": query.expression, "epoch": "s"},
            **kwargs,
        )
        return parse_influxdb_response(data)


def parse_influxdb_response(data: Any) -> list[MetricSeries]:
    """Convert an InfluxDB query response into series.

    The first non-time column of each series is used as the value.

    Raises:
        BackendError: If a statement reports an error or the body is malformed.
    """
    if not isinstance(data, dict):
        raise BackendError("malformed influxdb response")
    if "error" in data:
        raise BackendError(f"influxdb query failed: {data['error']}")

    series = []
    try:
        for result in data.get("results", []):
            if "error" in result:
                raise BackendError(f"influxdb statement failed: {result['error']}")
            for raw in result.get("series", []):
                columns = raw["columns"]
                time_idx = columns.index("time")
                value_idx = next(i for i, c in enumerate(columns) if c != "time")
                tags = {k: str(v) for k, v in (raw.get("tags") or {}).items()}
                points = [
                    MetricPoint(
                        value=float(row[value_idx]),
                        timestamp=datetime.fromtimestamp(int(row[time_idx]), tz=timezone.utc),
                    )
                    for row in raw.get("values", [])
                    if row[value_idx] is not None
                ]
                points.sort(key=lambda p: p.timestamp)
                name = raw.get("name", "")
                series_id = name
                if tags:
                    series_id += "{" + ",".join(f"{k}={v}" for k, v in sorted(tags.items())) + "}"
                series.append(MetricSeries(id=series_id, labels=tags, points=points))
    except (KeyError, StopIteration, TypeError, ValueError) as e:
        raise BackendError(f"malformed influxdb series: {e}") from e

    return series
