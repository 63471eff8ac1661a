"""Wiring of router, cache, executor and controller from configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from termpulse.cache import MetricCache
from termpulse.config import TermpulseConfig
from termpulse.controller import MetricController
from termpulse.executor import ParallelQueryExecutor, QueryExecutor
from termpulse.gatherers.router import DatasourceRouter, GathererFactory
from termpulse.model import Datasource, DatasourceKind
from termpulse.telemetry import EngineTelemetry


@dataclass
class Engine:
    """The assembled metric gathering engine.

    Use as an async context manager so the cache sweep runs and backend
    sessions get closed.
    """

    config: TermpulseConfig
    router: DatasourceRouter
    cache: MetricCache | None
    executor: QueryExecutor
    controller: MetricController
    telemetry: EngineTelemetry = field(default_factory=EngineTelemetry)

    def update_telemetry(self) -> EngineTelemetry:
        self.telemetry.update(router=self.router, cache=self.cache, executor=self.executor)
        return self.telemetry

    async def __aenter__(self) -> Engine:
        if self.cache is not None:
            self.cache.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.cache is not None:
            await self.cache.aclose()
        await self.router.aclose()


def build_engine(
    config: TermpulseConfig,
    dashboard_datasources: Iterable[Datasource] = (),
    factories: Mapping[DatasourceKind, GathererFactory] | None = None,
) -> Engine:
    """Assemble an engine.

    Args:
        config: Loaded configuration; its datasources are the user set.
        dashboard_datasources: Datasources declared by the dashboard.
        factories: Optional backend constructors per kind.

    Raises:
        ConfigurationError: On invalid datasources or aliases.
    """
    router = DatasourceRouter(
        dashboard_datasources=dashboard_datasources,
        user_datasources=config.datasources,
        aliases=config.aliases,
        factories=factories,
        config=config.timeouts,
    )

    cache = None
    if config.cache.enabled:
        cache = MetricCache(
            max_size=config.cache.max_size,
            max_age=config.cache.max_age,
            sweep_interval=config.cache.sweep_interval,
        )

    executor = QueryExecutor(cache=cache, config=config.executor)
    controller = MetricController(router, executor, ParallelQueryExecutor(executor))

    return Engine(
        config=config,
        router=router,
        cache=cache,
        executor=executor,
        controller=controller,
    )
