"""Tests for the process level refresh loop."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from termpulse.config import AppConfig
from termpulse.sync.app import App
from termpulse.sync.base import Syncer, SyncRequest


class CountingSyncer(Syncer):
    name = "counting"

    def __init__(self, delay: float = 0.0, error: Exception | None = None):
        self.delay = delay
        self.error = error
        self.requests: list[SyncRequest] = []

    async def sync(self, request: SyncRequest) -> None:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error


class TestSyncRequest:
    """Tests for App.sync_request."""

    def test_relative_range(self):
        app = App(CountingSyncer(), AppConfig(relative_time_range=900))

        request = app.sync_request()

        assert (request.time_range_end - request.time_range_start).total_seconds() == 900
        assert request.time_range_end.tzinfo is not None
        assert set(request.template_data) == {"__start", "__end"}

    def test_fixed_range(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 2, tzinfo=timezone.utc)
        app = App(CountingSyncer(), AppConfig(time_range_start=start, time_range_end=end))

        request = app.sync_request()

        assert request.time_range_start == start
        assert request.time_range_end == end


class TestApp:
    """Tests for App.run."""

    @pytest.mark.asyncio
    async def test_syncs_immediately(self):
        """The first pass MUST run without waiting for an interval."""
        syncer = CountingSyncer()
        app = App(syncer, AppConfig(refresh_interval=60))

        await asyncio.wait_for(app.run(max_iterations=1), timeout=1)

        assert len(syncer.requests) == 1
        assert not app.running

    @pytest.mark.asyncio
    async def test_repeats_on_interval(self):
        syncer = CountingSyncer()
        app = App(syncer, AppConfig(refresh_interval=0.01))

        await asyncio.wait_for(app.run(max_iterations=3), timeout=1)

        assert len(syncer.requests) == 3
        assert syncer.requests[0] is not syncer.requests[1]

    @pytest.mark.asyncio
    async def test_failing_pass_does_not_stop_loop(self, caplog):
        """A failed pass MUST be logged and the loop MUST continue."""
        syncer = CountingSyncer(error=RuntimeError("boom"))
        app = App(syncer, AppConfig(refresh_interval=0.01))

        with caplog.at_level(logging.ERROR):
            await asyncio.wait_for(app.run(max_iterations=2), timeout=1)

        assert len(syncer.requests) == 2
        assert "app level error, syncer failed sync" in caplog.text

    @pytest.mark.asyncio
    async def test_pass_timeout(self, caplog):
        syncer = CountingSyncer(delay=5)
        app = App(syncer, AppConfig(sync_timeout=0.05))

        with caplog.at_level(logging.ERROR):
            await asyncio.wait_for(app.sync_once(), timeout=1)

        assert "app sync timeout after 0.05s" in caplog.text

    @pytest.mark.asyncio
    async def test_stop(self):
        syncer = CountingSyncer()
        app = App(syncer, AppConfig(refresh_interval=60))

        task = asyncio.create_task(app.run())
        while not syncer.requests:
            await asyncio.sleep(0.01)
        app.stop()

        await asyncio.wait_for(task, timeout=1)
        assert len(syncer.requests) == 1

    @pytest.mark.asyncio
    async def test_already_running(self):
        """A second concurrent run MUST be rejected."""
        app = App(CountingSyncer(), AppConfig(refresh_interval=60))

        task = asyncio.create_task(app.run())
        await asyncio.sleep(0.01)
        assert app.running

        with pytest.raises(RuntimeError, match="already running"):
            await app.run()

        app.stop()
        await asyncio.wait_for(task, timeout=1)
