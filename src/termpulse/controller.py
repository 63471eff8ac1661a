"""Metric access used by widgets: routing plus executor in one facade."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from termpulse.executor import ParallelQueryExecutor, QueryExecutor, WidgetQuery, WidgetResult
from termpulse.gatherers.router import DatasourceRouter
from termpulse.model import MetricPoint, Query, TimeRange
from termpulse.resilience import DatasourceNotFoundError, NoMetricsError


class MetricController:
    """Resolves datasources through the router and runs queries on the executor."""

    def __init__(
        self,
        router: DatasourceRouter,
        executor: QueryExecutor,
        parallel: ParallelQueryExecutor | None = None,
    ):
        self.router = router
        self.executor = executor
        self.parallel = parallel or ParallelQueryExecutor(executor)

    async def get_single_metric(self, query: Query, at: datetime) -> MetricPoint:
        """Get the instant value of a query.

        Returns:
            Latest point of the first returned series.

        Raises:
            DatasourceNotFoundError: If the query's datasource is unknown.
            NoMetricsError: If the query returned no points.
        """
        gatherer = self.router.resolve(query.datasource_id)
        series = await self.executor.execute_query(gatherer, query, TimeRange.instant(at))
        for s in series:
            if s.latest is not None:
                return s.latest
        raise NoMetricsError(f"query {query.expression!r} returned no metrics")

    async def get_range_metrics(
        self,
        queries: Sequence[tuple[str, Query]],
        time_range: TimeRange,
        step: float | None = None,
    ) -> dict[str, WidgetResult]:
        """Get range series for several queries concurrently.

        Args:
            queries: (result ID, query) pairs.
            time_range: Range shared by every query.
            step: Resolution in seconds.

        Returns:
            Results keyed by result ID. Unknown datasources become error results.
        """
        batch: list[WidgetQuery] = []
        results: dict[str, WidgetResult] = {}
        for result_id, query in queries:
            try:
                gatherer = self.router.resolve(query.datasource_id)
            except DatasourceNotFoundError as e:
                results[result_id] = WidgetResult(id=result_id, error=e)
                continue
            batch.append(
                WidgetQuery(id=result_id, gatherer=gatherer, query=query, time_range=time_range, step=step)
            )

        results.update(await self.parallel.execute_widget_queries(batch))
        return results
