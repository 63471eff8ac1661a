"""Process-lifetime TTL cache for gathered metric series.

Entries are keyed by a SHA-256 fingerprint of the datasource, the query
expression and the queried time range. Expired entries are removed lazily on
access, before inserts once the cache is half full, and by a background sweep.

The pre-insert check only drops expired entries. There is no capacity based
eviction, so many unique keys with a long max_age grow the cache unbounded.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from termpulse.model import MetricSeries, TimeRange

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100
DEFAULT_MAX_AGE = 30.0  # seconds
DEFAULT_SWEEP_INTERVAL = 30.0  # seconds


def make_cache_key(datasource_id: str, expression: str, time_range: TimeRange) -> str:
    """Derive a deterministic cache key for a query.

    Args:
        datasource_id: ID of the datasource the query is sent to.
        expression: Query expression.
        time_range: Queried range; instants use start == end.

    Returns:
        Hex encoded SHA-256 digest.
    """
    h = hashlib.sha256()
    for part in (
        datasource_id,
        expression,
        _normalize(time_range.start),
        _normalize(time_range.end),
    ):
        encoded = part.encode("utf-8")
        # Length prefix keeps ("ab", "c") and ("a", "bc") apart
        h.update(len(encoded).to_bytes(8, "big"))
        h.update(encoded)
    return h.hexdigest()


def _normalize(ts: datetime) -> str:
    # Equal instants with different offsets share one key
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat()


@dataclass
class CacheEntry:
    """Cached series with expiration. Replaced, never mutated, on refresh."""

    data: list[MetricSeries]
    created: float
    expires: float
    hit_count: int = 0


@dataclass(frozen=True)
class CacheStats:
    """Cache performance snapshot."""

    hits: int
    misses: int
    hit_rate: float
    size: int


class MetricCache:
    """Thread-safe TTL cache for metric query results."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        max_age: float = DEFAULT_MAX_AGE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            max_size: Entry count at which inserts start sweeping expired entries
                      (once the cache holds more than half of it).
            max_age: Seconds an entry stays valid after insertion.
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic clock, injectable for tests.
        """
        self.max_size = max_size
        self.max_age = max_age
        self.sweep_interval = sweep_interval
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

        self._sweep_task: asyncio.Task | None = None

    def get(self, key: str) -> tuple[list[MetricSeries] | None, bool]:
        """Retrieve series for a key if present and not expired.

        Returns:
            Tuple of (data, found). Data is None on a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if self._clock() < entry.expires:
                    entry.hit_count += 1
                    self._hits += 1
                    return entry.data, True
                del self._entries[key]

            self._misses += 1
            return None, False

    def set(self, key: str, data: list[MetricSeries]) -> None:
        """Store series under a key, overwriting any existing entry."""
        with self._lock:
            if len(self._entries) * 2 > self.max_size:
                self._evict_expired_locked()

            now = self._clock()
            self._entries[key] = CacheEntry(
                data=data,
                created=now,
                expires=now + self.max_age,
            )

    def evict_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            return self._evict_expired_locked()

    def _evict_expired_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def entry_hits(self, key: str) -> int:
        """Get the per-entry hit counter, 0 when absent."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.hit_count if entry else 0

    def stats(self) -> CacheStats:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total * 100 if total > 0 else 0.0
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=hit_rate,
                size=len(self._entries),
            )

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        with self._lock:
            self._entries = {}
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def aclose(self) -> None:
        """Stop the periodic sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.evict_expired()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    async def __aenter__(self) -> MetricCache:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
