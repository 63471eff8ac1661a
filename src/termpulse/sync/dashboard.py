"""Dashboard level sync: one concurrent, fault-isolated task per widget."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from termpulse.config import DashboardConfig
from termpulse.resilience import WidgetSyncError
from termpulse.sync.base import Syncer, SyncRequest

logger = logging.getLogger(__name__)


class WidgetDataMiddleware(Syncer):
    """Adds dashboard static and override variables to a widget's request.

    Override variables win over static ones.
    """

    def __init__(
        self,
        widget: Syncer,
        static_data: Mapping[str, Any],
        override_data: Mapping[str, Any],
    ):
        self.widget = widget
        self.name = widget.name
        self._data = {**static_data, **override_data}

    async def sync(self, request: SyncRequest) -> None:
        await self.widget.sync(request.with_template_data(self._data))


class Dashboard(Syncer):
    """Syncs every widget concurrently under a shared deadline.

    A failing or slow widget never blocks or fails the wave; its error is
    logged once every widget task has finished.
    """

    def __init__(self, widgets: Sequence[Syncer], config: DashboardConfig | None = None, name: str = "dashboard"):
        self.config = config or DashboardConfig()
        self.name = name
        self.widgets: list[Syncer] = [
            WidgetDataMiddleware(w, self.config.static_variables, self.config.override_variables)
            for w in widgets
        ]

    async def sync(self, request: SyncRequest) -> None:
        request = request.with_template_data(self.config.sync_variables)

        deadline = asyncio.get_running_loop().time() + self.config.widget_timeout
        errors: asyncio.Queue[WidgetSyncError] = asyncio.Queue(maxsize=len(self.widgets))

        # Don't wait for one widget before starting the next: widgets reject
        # overlapping syncs themselves.
        await asyncio.gather(*(self._sync_widget(w, request, deadline, errors) for w in self.widgets))

        while not errors.empty():
            err = errors.get_nowait()
            logger.error(str(err))

    async def _sync_widget(
        self,
        widget: Syncer,
        request: SyncRequest,
        deadline: float,
        errors: asyncio.Queue,
    ) -> None:
        try:
            async with asyncio.timeout_at(deadline):
                await widget.sync(request)
        except TimeoutError as e:
            errors.put_nowait(
                WidgetSyncError(f"widget {widget.name} sync timeout: {str(e) or 'deadline exceeded'}", widget.name)
            )
        except Exception as e:
            errors.put_nowait(WidgetSyncError(f"error syncing widget {widget.name}: {e}", widget.name))
