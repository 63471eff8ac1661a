"""Datasource routing with dashboard < user < alias override priority."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Mapping

from termpulse.config import TimeoutConfig
from termpulse.gatherers.base import Gatherer
from termpulse.gatherers.fake import FakeGatherer
from termpulse.gatherers.graphite import GraphiteGatherer
from termpulse.gatherers.influxdb import InfluxDBGatherer
from termpulse.gatherers.prometheus import PrometheusGatherer
from termpulse.gatherers.resilient import ResilientGatherer
from termpulse.model import Datasource, DatasourceKind, MetricSeries, Query
from termpulse.resilience import ConfigurationError, DatasourceNotFoundError

logger = logging.getLogger(__name__)

GathererFactory = Callable[[Datasource], Gatherer]


def _create_prometheus(ds: Datasource) -> Gatherer:
    return PrometheusGatherer(ds.prometheus.address)


def _create_graphite(ds: Datasource) -> Gatherer:
    return GraphiteGatherer(ds.graphite.address)


def _create_influxdb(ds: Datasource) -> Gatherer:
    return InfluxDBGatherer(ds.influxdb)


def _create_fake(ds: Datasource) -> Gatherer:
    return FakeGatherer()


DEFAULT_FACTORIES: dict[DatasourceKind, GathererFactory] = {
    DatasourceKind.PROMETHEUS: _create_prometheus,
    DatasourceKind.GRAPHITE: _create_graphite,
    DatasourceKind.INFLUXDB: _create_influxdb,
    DatasourceKind.FAKE: _create_fake,
}


class DatasourceRouter(Gatherer):
    """Dispatches queries to the gatherer of their datasource ID.

    Priorities, lowest first:
    - 0: datasources declared by the dashboard
    - 1: datasources declared by the user, replacing dashboard ones by ID
    - 2: aliases mapping a dashboard ID to a user datasource ID
    """

    def __init__(
        self,
        dashboard_datasources: Iterable[Datasource] = (),
        user_datasources: Iterable[Datasource] = (),
        aliases: Mapping[str, str] | None = None,
        factories: Mapping[DatasourceKind, GathererFactory] | None = None,
        config: TimeoutConfig | None = None,
    ):
        """Build the routing table.

        Args:
            dashboard_datasources: Datasources referenced by the dashboard.
            user_datasources: Datasources defined by the user.
            aliases: Map of dashboard datasource ID to user datasource ID.
            factories: Backend constructors per kind; defaults fill the gaps.
            config: Timeout settings for every resilient gatherer.

        Raises:
            ConfigurationError: If a datasource kind is invalid or an alias
                targets an unknown user datasource.
        """
        self.config = config or TimeoutConfig()
        self._factories = {**DEFAULT_FACTORIES, **(factories or {})}
        self.aliases = dict(aliases or {})
        self._created: list[ResilientGatherer] = []

        # Lowest priority (0).
        gatherers: dict[str, ResilientGatherer] = {}
        for ds in dashboard_datasources:
            gatherers[ds.id] = self._create_gatherer(ds)

        # Mid priority (1).
        user_gatherers: dict[str, ResilientGatherer] = {}
        for ds in user_datasources:
            user_gatherers[ds.id] = self._create_gatherer(ds)

        for ds_id, gatherer in user_gatherers.items():
            if ds_id in gatherers:
                logger.debug(f"User datasource overrides dashboard datasource {ds_id}")
            gatherers[ds_id] = gatherer

        # Highest priority (2).
        for ds_id, target in self.aliases.items():
            if target not in user_gatherers:
                raise ConfigurationError(f"alias {target} for ID {ds_id} not found")
            gatherers[ds_id] = user_gatherers[target]

        self._gatherers = gatherers

    def _create_gatherer(self, ds: Datasource) -> ResilientGatherer:
        kind = ds.kind
        factory = self._factories.get(kind)
        if factory is None:
            raise ConfigurationError(f"no gatherer factory for datasource kind {kind.value}")
        gatherer = ResilientGatherer(factory(ds), ds.id, self.config)
        # Shadowed instances are tracked too so aclose() releases them
        self._created.append(gatherer)
        return gatherer

    def resolve(self, datasource_id: str) -> ResilientGatherer:
        """Get the gatherer serving a datasource ID.

        Raises:
            DatasourceNotFoundError: If the ID is not routable.
        """
        gatherer = self._gatherers.get(datasource_id)
        if gatherer is None:
            raise DatasourceNotFoundError(datasource_id)
        return gatherer

    def datasource_ids(self) -> list[str]:
        """Get every routable datasource ID."""
        return sorted(self._gatherers)

    def gatherers(self) -> list[ResilientGatherer]:
        """Get the distinct routable gatherers."""
        unique: dict[int, ResilientGatherer] = {}
        for g in self._gatherers.values():
            unique.setdefault(id(g), g)
        return list(unique.values())

    async def gather_single(self, query: Query, at: datetime) -> list[MetricSeries]:
        return await self.resolve(query.datasource_id).gather_single(query, at)

    async def gather_range(
        self,
        query: Query,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[MetricSeries]:
        return await self.resolve(query.datasource_id).gather_range(query, start, end, step)

    async def aclose(self) -> None:
        for gatherer in self._created:
            try:
                await gatherer.aclose()
            except Exception as e:
                logger.warning(f"Failed to close gatherer {gatherer.id}: {e}")
