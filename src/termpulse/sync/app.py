"""Process level refresh loop driving the sync cascade."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from termpulse.config import AppConfig
from termpulse.sync.base import Syncer, SyncRequest

logger = logging.getLogger(__name__)


class App:
    """Runs one sync pass immediately and then one per refresh interval.

    Each pass has its own deadline and fault boundary; only cancellation
    or stop() ends the loop.
    """

    def __init__(self, syncer: Syncer, config: AppConfig | None = None):
        self.syncer = syncer
        self.config = config or AppConfig()
        self._running = False
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, max_iterations: int | None = None) -> None:
        """Run the refresh loop.

        Args:
            max_iterations: Optional number of passes before returning (for testing).

        Raises:
            RuntimeError: If the app is already running.
        """
        if self._running:
            raise RuntimeError("already running")
        self._running = True
        try:
            await self._loop(max_iterations)
        finally:
            self._running = False

    async def _loop(self, max_iterations: int | None) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.refresh_interval

        await self.sync_once()
        iteration = 1
        next_tick = loop.time() + interval

        while not self._stop.is_set():
            if max_iterations is not None and iteration >= max_iterations:
                break

            try:
                async with asyncio.timeout_at(next_tick):
                    await self._stop.wait()
                break
            except TimeoutError:
                pass

            # Ticks missed while a pass overran are dropped, not queued
            now = loop.time()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval

            await self.sync_once()
            iteration += 1

    def stop(self) -> None:
        """Ask the loop to return after the current pass."""
        self._stop.set()

    async def sync_once(self) -> None:
        """Run one bounded, fault-isolated sync pass."""
        timeout = self.config.sync_timeout
        request = self.sync_request()
        try:
            async with asyncio.timeout(timeout):
                await self.syncer.sync(request)
        except TimeoutError as e:
            logger.error(f"app sync timeout after {timeout:g}s: {e}")
        except Exception as e:
            logger.error(f"app level error, syncer failed sync: {e}", exc_info=True)

    def sync_request(self) -> SyncRequest:
        """Build a fresh request for this pass.

        Without fixed times the range ends now and spans the relative range.
        """
        end = self.config.time_range_end or datetime.now(timezone.utc)
        start = self.config.time_range_start or end - timedelta(seconds=self.config.relative_time_range)
        return SyncRequest(
            time_range_start=start,
            time_range_end=end,
            template_data={"__start": str(start), "__end": str(end)},
        )
