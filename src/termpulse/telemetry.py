"""Prometheus exposition of engine counters.

Mirrors gatherer, cache and executor statistics into a CollectorRegistry so
they can be rendered in text format or pushed to a Pushgateway.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Gauge, generate_latest, push_to_gateway

if TYPE_CHECKING:
    from termpulse.cache import MetricCache
    from termpulse.executor import QueryExecutor
    from termpulse.gatherers.router import DatasourceRouter

logger = logging.getLogger(__name__)

DEFAULT_JOB = "termpulse"


class EngineTelemetry:
    """Registry of gauges fed from engine statistics."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.gatherer_queries = Gauge(
            "termpulse_gatherer_queries",
            "Terminal gatherer calls by outcome",
            ["datasource", "outcome"],
            registry=self.registry,
        )
        self.gatherer_avg_exec_seconds = Gauge(
            "termpulse_gatherer_average_exec_seconds",
            "Blended average gatherer execution time",
            ["datasource"],
            registry=self.registry,
        )
        self.gatherer_timeout_seconds = Gauge(
            "termpulse_gatherer_timeout_seconds",
            "Current per-call gatherer timeout",
            ["datasource"],
            registry=self.registry,
        )
        self.cache_hits = Gauge("termpulse_cache_hits", "Cache hits", registry=self.registry)
        self.cache_misses = Gauge("termpulse_cache_misses", "Cache misses", registry=self.registry)
        self.cache_hit_rate = Gauge(
            "termpulse_cache_hit_rate_percent", "Cache hit rate percentage", registry=self.registry
        )
        self.cache_size = Gauge("termpulse_cache_entries", "Cached entries", registry=self.registry)
        self.executor_queries = Gauge(
            "termpulse_executor_queries",
            "Executor queries by outcome",
            ["outcome"],
            registry=self.registry,
        )

    def update(
        self,
        router: DatasourceRouter | None = None,
        cache: MetricCache | None = None,
        executor: QueryExecutor | None = None,
    ) -> None:
        """Refresh gauges from the given components' current statistics."""
        if router is not None:
            for gatherer in router.gatherers():
                stats = gatherer.stats()
                ds = gatherer.id
                self.gatherer_queries.labels(datasource=ds, outcome="success").set(stats.successful_queries)
                self.gatherer_queries.labels(datasource=ds, outcome="failure").set(stats.failed_queries)
                self.gatherer_queries.labels(datasource=ds, outcome="timeout").set(stats.timeout_queries)
                self.gatherer_avg_exec_seconds.labels(datasource=ds).set(stats.average_exec_time)
                self.gatherer_timeout_seconds.labels(datasource=ds).set(stats.current_timeout)

        if cache is not None:
            cache_stats = cache.stats()
            self.cache_hits.set(cache_stats.hits)
            self.cache_misses.set(cache_stats.misses)
            self.cache_hit_rate.set(cache_stats.hit_rate)
            self.cache_size.set(cache_stats.size)

        if executor is not None:
            exec_stats = executor.metrics.stats()
            self.executor_queries.labels(outcome="cache_hit").set(exec_stats.cache_hits)
            self.executor_queries.labels(outcome="success").set(exec_stats.successes)
            self.executor_queries.labels(outcome="error").set(exec_stats.errors)

    def render(self) -> str:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")

    def push(self, gateway_url: str, job: str = DEFAULT_JOB) -> bool:
        """Push the registry to a Pushgateway.

        Returns:
            True on success. Failures are logged, never raised.
        """
        try:
            push_to_gateway(gateway=gateway_url, job=job, registry=self.registry)
            return True
        except Exception as e:
            logger.warning(f"Failed to push metrics: {e}")
            return False
