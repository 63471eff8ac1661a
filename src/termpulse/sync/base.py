"""Sync contract shared by the app, dashboards and widgets."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class SyncRequest:
    """Data for one refresh pass.

    Created fresh per tick by the app and enriched on the way down. Each
    enrichment returns a new request, so concurrent consumers never share
    a mutable one.
    """

    time_range_start: datetime
    time_range_end: datetime
    template_data: Mapping[str, Any] = field(default_factory=dict)

    def with_template_data(self, data: Mapping[str, Any]) -> SyncRequest:
        """Return a copy with ``data`` merged over the current template data."""
        if not data:
            return self
        return replace(self, template_data={**self.template_data, **data})


class Syncer(ABC):
    """Anything that refreshes itself from a SyncRequest."""

    name: str = ""

    @abstractmethod
    async def sync(self, request: SyncRequest) -> None:
        """Refresh using the request.

        Raises:
            Exception: Any failure; callers decide how to isolate it.
        """
        ...


class SyncGuard:
    """Non-blocking, non-reentrant guard allowing one sync in flight.

    Holds a lock, so it is shared by reference only; copying raises.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Take the guard if free. Never blocks."""
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        """Release the guard. Releasing a free guard is a no-op."""
        try:
            self._lock.release()
        except RuntimeError:
            pass

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    def __copy__(self) -> SyncGuard:
        raise TypeError("SyncGuard cannot be copied; share it by reference")

    def __deepcopy__(self, memo: dict) -> SyncGuard:
        raise TypeError("SyncGuard cannot be copied; share it by reference")
