"""
In-memory TTL caching utilities
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from loguru import logger

from shared.models.base import ICacheProvider


@dataclass
class CacheEntry:
    """Cached value with the time it was stored"""
    value: Any
    stored_at: float


class TTLCache(ICacheProvider[str, Any]):
    """
    Process-local cache with time-to-live

    Entries are served by get() while younger than ttl. Older entries are
    kept so get_stale() can still return them as a fallback, up to max_stale.
    Writes are last-writer-wins; no locking.
    """

    def __init__(
        self,
        ttl: float = 60.0,
        max_stale: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache

        Args:
            ttl: Seconds an entry counts as fresh
            max_stale: Seconds an entry may be used as a fallback (defaults to ttl)
            clock: Monotonic clock, injectable for tests
        """
        self.ttl = ttl
        self.max_stale = max_stale if max_stale is not None else ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

        logger.debug(f"Initialized TTLCache: ttl={ttl}s, max_stale={self.max_stale}s")

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.stored_at

    def get(self, key: str) -> Optional[Any]:
        """Get value if still fresh"""
        entry = self._entries.get(key)
        if entry is None or self._age(entry) > self.ttl:
            return None
        return entry.value

    def get_stale(self, key: str) -> Optional[Any]:
        """Get value even if expired, as long as it is within max_stale"""
        entry = self._entries.get(key)
        if entry is None or self._age(entry) > self.max_stale:
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store value"""
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def set_many(self, mapping: dict[str, Any]) -> None:
        """Store multiple values with the same timestamp"""
        now = self._clock()
        for key, value in mapping.items():
            self._entries[key] = CacheEntry(value=value, stored_at=now)

    def delete(self, key: str) -> None:
        """Delete from cache"""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear entire cache"""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
