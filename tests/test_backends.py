"""Tests for backend gatherers and their response parsers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from termpulse.gatherers.fake import FakeGatherer
from termpulse.gatherers.graphite import GraphiteGatherer, parse_graphite_response
from termpulse.gatherers.influxdb import InfluxDBGatherer, parse_influxdb_response
from termpulse.gatherers.prometheus import (
    PrometheusGatherer,
    parse_prometheus_response,
    series_id,
)
from termpulse.model import InfluxDBDatasource, Query
from termpulse.resilience import BackendError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
TS = int(NOW.timestamp())


def mock_session(status=200, payload=None, text=""):
    """Create a ClientSession mock whose get() yields one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.get.return_value.__aenter__ = AsyncMock(return_value=response)
    session.get.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


# =============================================================================
# Prometheus
# =============================================================================


class TestPrometheusParsing:
    """Tests for parse_prometheus_response."""

    def test_vector(self):
        data = {
            "status": "success",
            "data": {
                "resultType": "vector",
                "result": [{"metric": {"__name__": "up", "job": "node"}, "value": [TS, "1"]}],
            },
        }

        series = parse_prometheus_response(data)

        assert len(series) == 1
        assert series[0].id == 'up{job="node"}'
        assert series[0].latest.value == 1.0
        assert series[0].latest.timestamp == NOW

    def test_matrix_sorted(self):
        data = {
            "status": "success",
            "data": {
                "resultType": "matrix",
                "result": [{"metric": {}, "values": [[TS + 15, "2"], [TS, "1"]]}],
            },
        }

        points = parse_prometheus_response(data)[0].points

        assert [p.value for p in points] == [1.0, 2.0]

    def test_scalar(self):
        data = {"status": "success", "data": {"resultType": "scalar", "result": [TS, "3.5"]}}
        assert parse_prometheus_response(data)[0].latest.value == 3.5

    def test_error_status(self):
        with pytest.raises(BackendError, match="bad_data"):
            parse_prometheus_response({"status": "error", "error": "bad_data"})

    def test_unsupported_type(self):
        with pytest.raises(BackendError):
            parse_prometheus_response({"status": "success", "data": {"resultType": "string"}})

    def test_malformed_vector(self):
        data = {"status": "success", "data": {"resultType": "vector", "result": [{"metric": {}}]}}
        with pytest.raises(BackendError):
            parse_prometheus_response(data)

    def test_series_id(self):
        assert series_id({}) == "{}"
        assert series_id({"__name__": "up"}) == "up"
        assert series_id({"b": "2", "a": "1"}) == '{a="1", b="2"}'


class TestPrometheusGatherer:
    """Tests for PrometheusGatherer over a mocked session."""

    @pytest.mark.asyncio
    async def test_single_query_request(self):
        payload = {"status": "success", "data": {"resultType": "vector", "result": []}}
        session = mock_session(payload=payload)
        g = PrometheusGatherer("http://prom:9090/", session=session)

        assert await g.gather_single(Query("up", "prom"), NOW) == []

        args, kwargs = session.get.call_args
        assert args[0] == "http://prom:9090/api/v1/query"
        assert kwargs["params"]["query"] == "up"

    @pytest.mark.asyncio
    async def test_range_query_request(self):
        payload = {"status": "success", "data": {"resultType": "matrix", "result": []}}
        session = mock_session(payload=payload)
        g = PrometheusGatherer("http://prom:9090", session=session)

        await g.gather_range(Query("up", "prom"), NOW - timedelta(hours=1), NOW, 30)

        args, kwargs = session.get.call_args
        assert args[0].endswith("/api/v1/query_range")
        assert kwargs["params"]["step"] == "30"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Non-2xx responses MUST raise BackendError with the status."""
        g = PrometheusGatherer("http://prom:9090", session=mock_session(status=503, text="overloaded"))

        with pytest.raises(BackendError) as exc_info:
            await g.gather_single(Query("up", "prom"), NOW)

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = mock_session()
        session.get.side_effect = aiohttp.ClientConnectionError("refused")
        g = PrometheusGatherer("http://prom:9090", session=session)

        with pytest.raises(BackendError, match="refused"):
            await g.gather_single(Query("up", "prom"), NOW)

    @pytest.mark.asyncio
    async def test_external_session_not_closed(self):
        session = mock_session()
        g = PrometheusGatherer("http://prom:9090", session=session)

        await g.aclose()

        session.close.assert_not_called()


# =============================================================================
# Graphite
# =============================================================================


class TestGraphite:
    """Tests for Graphite parsing and single queries."""

    def test_drops_null_points(self):
        data = [{"target": "cpu", "datapoints": [[1.0, TS], [None, TS + 60], [3.0, TS + 120]]}]

        series = parse_graphite_response(data)

        assert series[0].id == "cpu"
        assert [p.value for p in series[0].points] == [1.0, 3.0]

    def test_malformed(self):
        with pytest.raises(BackendError):
            parse_graphite_response({"not": "a list"})
        with pytest.raises(BackendError):
            parse_graphite_response([{"datapoints": []}])

    @pytest.mark.asyncio
    async def test_single_keeps_last_point(self):
        payload = [{"target": "cpu", "datapoints": [[1.0, TS - 120], [2.0, TS - 60], [None, TS]]}]
        g = GraphiteGatherer("http://graphite", session=mock_session(payload=payload))

        series = await g.gather_single(Query("cpu", "g"), NOW)

        assert len(series[0].points) == 1
        assert series[0].latest.value == 2.0


# =============================================================================
# InfluxDB
# =============================================================================


class TestInfluxDB:
    """Tests for InfluxDB parsing and point selection."""

    PAYLOAD = {
        "results": [
            {
                "series": [
                    {
                        "name": "cpu",
                        "tags": {"host": "a"},
                        "columns": ["time", "usage"],
                        "values": [[TS - 60, 10.0], [TS, 20.0], [TS + 60, 30.0]],
                    }
                ]
            }
        ]
    }

    def test_parse(self):
        series = parse_influxdb_response(self.PAYLOAD)

        assert series[0].id == "cpu{host=a}"
        assert series[0].labels == {"host": "a"}
        assert [p.value for p in series[0].points] == [10.0, 20.0, 30.0]

    def test_statement_error(self):
        with pytest.raises(BackendError, match="influxdb statement failed"):
            parse_influxdb_response({"results": [{"error": "database not found"}]})

    @pytest.mark.asyncio
    async def test_single_picks_last_point_not_after(self):
        ds = InfluxDBDatasource(address="http://influx:8086", database="telegraf")
        g = InfluxDBGatherer(ds, session=mock_session(payload=self.PAYLOAD))

        series = await g.gather_single(Query("SELECT usage FROM cpu", "influx"), NOW)

        assert series[0].latest.value == 20.0

    @pytest.mark.asyncio
    async def test_range_clips_and_sends_auth(self):
        ds = InfluxDBDatasource(
            address="https://influx:8086",
            database="telegraf",
            username="reader",
            password="secret",
            insecure=True,
        )
        session = mock_session(payload=self.PAYLOAD)
        g = InfluxDBGatherer(ds, session=session)

        series = await g.gather_range(Query("q", "influx"), NOW - timedelta(minutes=5), NOW, 60)

        assert [p.value for p in series[0].points] == [10.0, 20.0]
        kwargs = session.get.call_args.kwargs
        assert kwargs["params"]["db"] == "telegraf"
        assert kwargs["auth"].login == "reader"
        assert kwargs["ssl"] is False


# =============================================================================
# Fake
# =============================================================================


class TestFakeGatherer:
    """Tests for the synthetic gatherer."""

    @pytest.mark.asyncio
    async def test_deterministic(self):
        g = FakeGatherer()
        a = await g.gather_single(Query("load", "demo"), NOW)
        b = await g.gather_single(Query("load", "demo"), NOW)

        assert a[0].latest.value == b[0].latest.value
        assert 0.0 <= a[0].latest.value <= 100.0

    def test_expressions_differ(self):
        g = FakeGatherer()
        assert g.value_at("cpu", NOW) != g.value_at("mem", NOW)

    @pytest.mark.asyncio
    async def test_range_points(self):
        g = FakeGatherer()
        series = await g.gather_range(Query("load", "demo"), NOW - timedelta(minutes=1), NOW, 15)

        assert len(series[0].points) == 5
        assert series[0].points[-1].timestamp == NOW

    @pytest.mark.asyncio
    async def test_range_rejects_bad_step(self):
        with pytest.raises(ValueError):
            await FakeGatherer().gather_range(Query("load", "demo"), NOW, NOW, 0)
