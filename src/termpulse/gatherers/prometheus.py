"""Prometheus HTTP API gatherer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from termpulse.gatherers.http import HTTPGatherer
from termpulse.model import MetricPoint, MetricSeries, Query
from termpulse.resilience import BackendError


class PrometheusGatherer(HTTPGatherer):
    """Gathers metrics from the Prometheus /api/v1 query endpoints."""

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        data = await self._get_json(
            "/api/v1/query",
            {"query": query.expression, "time": _unix(at)},
        )
        return parse_prometheus_response(data)

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        data = await self._get_json(
            "/api/v1/query_range",
            {
                "query": query.expression,
                "start": _unix(start),
                "end": _unix(end),
                "step": f"{step:g}",
            },
        )
        return parse_prometheus_response(data)


def _unix(ts: datetime) -> str:
    return f"{ts.timestamp():.3f}"


def _point(sample: list[Any]) -> MetricPoint:
    ts, value = sample
    return MetricPoint(
        value=float(value),
        timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc),
    )


def series_id(labels: dict[str, str]) -> str:
    """Format a label set the way Prometheus prints a metric."""
    labels = dict(labels)
    name = labels.pop("__name__", "")
    if not labels:
        return name or "{}"
    inner = ", ".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{inner}}}"


def parse_prometheus_response(data: Any) -> list[MetricSeries]:
    """Convert a Prometheus API response body into series.

    Supports vector, matrix and scalar result types.

    Raises:
        BackendError: If the response reports an error or is malformed.
    """
    if not isinstance(data, dict) or data.get("status") != "success":
        error = data.get("error", "unknown error") if isinstance(data, dict) else "malformed response"
        raise BackendError(f"prometheus query failed: {error}")

    result_type = data.get("data", {}).get("resultType")
    result = data.get("data", {}).get("result")

    try:
        if result_type == "scalar":
            return [MetricSeries(id="scalar", points=[_point(result)])]

        if result_type == "vector":
            series = []
            for item in result:
                labels = dict(item.get("metric", {}))
                series.append(
                    MetricSeries(id=series_id(labels), labels=labels, points=[_point(item["value"])])
                )
            return series

        if result_type == "matrix":
            series = []
            for item in result:
                labels = dict(item.get("metric", {}))
                points = sorted(
                    (_point(v) for v in item.get("values", [])),
                    key=lambda p: p.timestamp,
                )
                series.append(MetricSeries(id=series_id(labels), labels=labels, points=points))
            return series
    except (KeyError, TypeError, ValueError) as e:
        raise BackendError(f"malformed prometheus {result_type} result: {e}") from e

    raise BackendError(f"unsupported prometheus result type {result_type!r}")
