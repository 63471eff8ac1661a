"""Tests for datasource routing and override priorities."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from termpulse.gatherers.fake import FakeGatherer
from termpulse.gatherers.prometheus import PrometheusGatherer
from termpulse.gatherers.router import DatasourceRouter
from termpulse.model import (
    Datasource,
    DatasourceKind,
    FakeDatasource,
    PrometheusDatasource,
    Query,
)
from termpulse.resilience import ConfigurationError, DatasourceNotFoundError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def fake(ds_id: str) -> Datasource:
    return Datasource(id=ds_id, fake=FakeDatasource())


def prometheus(ds_id: str) -> Datasource:
    return Datasource(id=ds_id, prometheus=PrometheusDatasource("http://prom:9090"))


class TestRouting:
    """Tests for route table construction."""

    def test_dashboard_datasource_routable(self):
        router = DatasourceRouter(dashboard_datasources=[fake("dash")])
        assert router.resolve("dash").id == "dash"

    def test_user_datasource_routable(self):
        """User datasources MUST be routable by their own ID."""
        router = DatasourceRouter(user_datasources=[fake("mine")])
        assert router.resolve("mine").id == "mine"

    def test_user_overrides_dashboard(self):
        """A user datasource MUST replace a dashboard one with the same ID."""
        router = DatasourceRouter(
            dashboard_datasources=[prometheus("shared")],
            user_datasources=[fake("shared")],
        )
        assert isinstance(router.resolve("shared").backend, FakeGatherer)

    def test_alias_overrides_dashboard(self):
        """An alias MUST route a dashboard ID to the user datasource."""
        router = DatasourceRouter(
            dashboard_datasources=[prometheus("dash")],
            user_datasources=[fake("mine")],
            aliases={"dash": "mine"},
        )
        assert isinstance(router.resolve("dash").backend, FakeGatherer)

    def test_alias_shares_instance(self):
        """An alias and its target MUST resolve to the same gatherer."""
        router = DatasourceRouter(user_datasources=[fake("mine")], aliases={"dash": "mine"})

        assert router.resolve("dash") is router.resolve("mine")
        assert len(router.gatherers()) == 1

    def test_alias_to_unknown_user_datasource(self):
        """Aliases MUST only target user datasources."""
        with pytest.raises(ConfigurationError, match="alias missing for ID dash not found"):
            DatasourceRouter(user_datasources=[fake("mine")], aliases={"dash": "missing"})

    def test_alias_to_dashboard_datasource_rejected(self):
        with pytest.raises(ConfigurationError):
            DatasourceRouter(dashboard_datasources=[fake("other")], aliases={"dash": "other"})

    def test_invalid_kind(self):
        """A datasource without a kind MUST fail construction."""
        with pytest.raises(ConfigurationError):
            DatasourceRouter(user_datasources=[Datasource(id="bad")])

    def test_missing_factory(self):
        router_factories = {DatasourceKind.FAKE: None}
        with pytest.raises(ConfigurationError, match="no gatherer factory"):
            DatasourceRouter(user_datasources=[fake("x")], factories=router_factories)

    def test_unknown_datasource(self):
        """Unknown IDs MUST raise DatasourceNotFoundError."""
        router = DatasourceRouter(user_datasources=[fake("mine")])

        with pytest.raises(DatasourceNotFoundError, match="datasource nope does not exist"):
            router.resolve("nope")

    def test_datasource_ids(self):
        router = DatasourceRouter(
            dashboard_datasources=[fake("b")],
            user_datasources=[fake("a")],
            aliases={"c": "a"},
        )
        assert router.datasource_ids() == ["a", "b", "c"]

    def test_default_factories(self):
        router = DatasourceRouter(user_datasources=[prometheus("p"), fake("f")])

        assert isinstance(router.resolve("p").backend, PrometheusGatherer)
        assert isinstance(router.resolve("f").backend, FakeGatherer)


class TestDispatch:
    """Tests for query dispatch and lifecycle."""

    @pytest.mark.asyncio
    async def test_gather_single_dispatches(self):
        router = DatasourceRouter(user_datasources=[fake("demo")])

        series = await router.gather_single(Query("load", "demo"), NOW)

        assert series[0].id == "load"
        assert router.resolve("demo").stats().successful_queries == 1

    @pytest.mark.asyncio
    async def test_gather_unknown_raises(self):
        router = DatasourceRouter()

        with pytest.raises(DatasourceNotFoundError):
            await router.gather_single(Query("load", "demo"), NOW)

    @pytest.mark.asyncio
    async def test_aclose_closes_shadowed(self, stub_gatherer):
        """aclose MUST close every created backend, including replaced ones."""
        created = []

        def factory(ds):
            g = stub_gatherer(ds.id)
            created.append(g)
            return g

        router = DatasourceRouter(
            dashboard_datasources=[fake("shared")],
            user_datasources=[fake("shared")],
            factories={DatasourceKind.FAKE: factory},
        )

        await router.aclose()

        assert len(created) == 2
        assert all(g.closed for g in created)

    @pytest.mark.asyncio
    async def test_aclose_logs_failures(self, stub_gatherer, caplog):
        class BrokenClose(stub_gatherer):
            async def aclose(self):
                raise OSError("socket gone")

        router = DatasourceRouter(
            user_datasources=[fake("x")],
            factories={DatasourceKind.FAKE: lambda ds: BrokenClose(ds.id)},
        )

        with caplog.at_level(logging.WARNING):
            await router.aclose()

        assert "Failed to close gatherer x" in caplog.text
