"""In-memory TTL cache with an injectable clock."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Hashable, Optional

import pytz

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the moment it was fetched."""
    data: Any
    fetched_at: datetime


class TimedCache:
    """Key/value cache whose entries expire after a fixed TTL.

    Instances are passed to the services that use them rather than held as
    module state, so staleness can be driven by a fake clock.
    """

    def __init__(
        self,
        ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
        name: str = "cache",
    ):
        """Initialize the cache.

        Args:
            ttl: How long an entry stays fresh
            clock: Returns the current time
            name: Cache name used in log messages and stats
        """
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self.ttl

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None when missing or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self.is_fresh(entry):
                self._hits += 1
                return entry.data
            if entry is not None:
                del self._entries[key]
            self._misses += 1
            return None

    def set(self, key: Hashable, data: Any) -> CacheEntry:
        entry = CacheEntry(data=data, fetched_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Return the cached value, calling loader and caching on a miss.

        Empty results are not cached so a failed load is retried next time.
        """
        data = self.get(key)
        if data is not None:
            return data
        data = loader()
        if data:
            self.set(key, data)
        return data

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one entry, or every entry when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
                logger.info(f"Cache {self.name} cleared")
            else:
                self._entries.pop(key, None)

    def get_cache_stats(self) -> dict:
        with self._lock:
            fresh = sum(1 for e in self._entries.values() if self.is_fresh(e))
            return {
                "name": self.name,
                "entries": len(self._entries),
                "fresh_entries": fresh,
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": int(self.ttl.total_seconds()),
            }
