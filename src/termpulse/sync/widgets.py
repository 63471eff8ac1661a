"""Widgets that fetch metrics on sync and push them to their renderer.

Every widget owns a SyncGuard: a sync arriving while another is in flight
for the same widget returns immediately without fetching.
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

from termpulse.controller import MetricController
from termpulse.model import Query, TimeRange
from termpulse.resilience import WidgetSyncError
from termpulse.sync.base import Syncer, SyncGuard, SyncRequest
from termpulse.sync.render import GaugeRenderer, GraphRenderer, SinglestatRenderer

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 2.0  # seconds

# Renders a query expression with request template data
Templater = Callable[[str, Mapping[str, object]], str]


@dataclass(frozen=True)
class Threshold:
    """Color applied from start_value upwards."""

    start_value: float
    color: str


def color_for_value(thresholds: Sequence[Threshold], value: float) -> str | None:
    """Pick the color of the highest threshold whose start is <= value.

    Thresholds must be sorted by start_value. Values below every threshold
    use the lowest threshold's color.
    """
    if not thresholds:
        return None
    color = thresholds[0].color
    for threshold in thresholds:
        if value >= threshold.start_value:
            color = threshold.color
        else:
            break
    return color


class Widget(Syncer):
    """Base widget: guard handling, fetch deadline and threshold colors."""

    def __init__(
        self,
        title: str,
        controller: MetricController,
        thresholds: Sequence[Threshold] = (),
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        templater: Templater | None = None,
    ):
        self.name = title
        self.controller = controller
        # Sorted once so color lookups don't sort on every sync
        self.thresholds = sorted(thresholds, key=lambda t: t.start_value)
        self.fetch_timeout = fetch_timeout
        self.templater = templater
        self.current_color: str | None = None
        self._guard = SyncGuard()

    @property
    def syncing(self) -> bool:
        return self._guard.locked

    async def sync(self, request: SyncRequest) -> None:
        if not self._guard.try_acquire():
            logger.debug(f"Widget {self.name} already syncing, skipping")
            return
        try:
            await self._sync(request)
        finally:
            self._guard.release()

    @abstractmethod
    async def _sync(self, request: SyncRequest) -> None: ...

    def render_query(self, query: Query, request: SyncRequest) -> Query:
        if self.templater is None:
            return query
        return Query(
            expression=self.templater(query.expression, request.template_data),
            datasource_id=query.datasource_id,
        )

    def _color_changed(self, value: float) -> str | None:
        """Get the new threshold color, or None when it is unchanged."""
        color = color_for_value(self.thresholds, value)
        if color is None or color == self.current_color:
            return None
        return color


class SinglestatWidget(Widget):
    """Shows one instant value as text."""

    def __init__(
        self,
        title: str,
        controller: MetricController,
        query: Query,
        renderer: SinglestatRenderer,
        value_text: str = "{value:.2f}",
        **kwargs,
    ):
        super().__init__(title, controller, **kwargs)
        self.query = query
        self.renderer = renderer
        self.value_text = value_text

    async def _sync(self, request: SyncRequest) -> None:
        query = self.render_query(self.query, request)
        async with asyncio.timeout(self.fetch_timeout):
            point = await self.controller.get_single_metric(query, request.time_range_end)

        color = self._color_changed(point.value)
        if color is not None:
            self.renderer.set_color(color)
            self.current_color = color

        self.renderer.sync_text(self.value_text.format(value=point.value))


class GaugeWidget(Widget):
    """Shows one instant value, optionally as a percentage of [min, max]."""

    def __init__(
        self,
        title: str,
        controller: MetricController,
        query: Query,
        renderer: GaugeRenderer,
        percent_value: bool = False,
        min_value: float = 0.0,
        max_value: float = 0.0,
        **kwargs,
    ):
        super().__init__(title, controller, **kwargs)
        self.query = query
        self.renderer = renderer
        self.percent_value = percent_value
        self.min_value = min_value
        self.max_value = max_value

    def percent(self, value: float) -> float:
        """Convert to a 0-100 percentage. Without a max, value is already a percent.

        A zero-width range (min == max) maps values above it to 100 and the
        rest to 0.
        """
        if self.max_value != 0 and self.max_value == self.min_value:
            return 100.0 if value > self.min_value else 0.0
        if self.max_value != 0:
            value = (value - self.min_value) / (self.max_value - self.min_value) * 100
        return max(0.0, min(100.0, value))

    async def _sync(self, request: SyncRequest) -> None:
        query = self.render_query(self.query, request)
        async with asyncio.timeout(self.fetch_timeout):
            point = await self.controller.get_single_metric(query, request.time_range_end)

        value = self.percent(point.value) if self.percent_value else point.value

        color = self._color_changed(value)
        if color is not None:
            self.renderer.set_color(color)
            self.current_color = color

        self.renderer.sync_value(self.percent_value, value)


class GraphWidget(Widget):
    """Shows the series of several range queries over the request range."""

    def __init__(
        self,
        title: str,
        controller: MetricController,
        queries: Sequence[Query],
        renderer: GraphRenderer,
        step: float | None = None,
        **kwargs,
    ):
        super().__init__(title, controller, **kwargs)
        self.queries = list(queries)
        self.renderer = renderer
        self.step = step

    async def _sync(self, request: SyncRequest) -> None:
        time_range = TimeRange(request.time_range_start, request.time_range_end)
        batch = [
            (f"{self.name}#{i}", self.render_query(q, request))
            for i, q in enumerate(self.queries)
        ]
        async with asyncio.timeout(self.fetch_timeout):
            results = await self.controller.get_range_metrics(batch, time_range, self.step)

        series = []
        errors = []
        for result_id, _ in batch:
            result = results.get(result_id)
            if result is None:
                continue
            if result.ok:
                series.extend(result.metrics or [])
            else:
                logger.warning(f"Graph {self.name} query {result_id} failed: {result.error}")
                errors.append(result.error)

        if errors and len(errors) == len(batch):
            raise WidgetSyncError(
                f"all {len(batch)} graph queries failed: {errors[-1]}", widget=self.name
            ) from errors[-1]

        self.renderer.sync_series(series)
