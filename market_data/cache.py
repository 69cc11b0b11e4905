"""
In-memory caches for the pricing pipeline.

TTLCache: time-to-live cache for provider responses (quotes, chains).
LRUCache: bounded least-recently-used cache for the latest price per symbol.

Pure stdlib, no Streamlit dependency so the pipeline works outside of Streamlit.
"""
import time
from collections import OrderedDict
from typing import Any, Callable, Optional


class TTLCache:
    """
    Simple time-to-live cache backed by a plain dict.
    Expired entries are treated as absent and purged lazily on read.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: dict = {}

    def get(self, key: str) -> Optional[Any]:
        """Return cached value if still within TTL, else None."""
        entry = self._store.get(key)
        if entry is None:
            return None
        value, ts = entry
        if self._clock() - ts <= self._ttl:
            return value
        del self._store[key]
        return None

    def set(self, key: str, value: Any) -> None:
        """Store value with current timestamp."""
        self._store[key] = (value, self._clock())

    def clear(self) -> None:
        """Invalidate all cached entries."""
        self._store.clear()

    def invalidate(self, key: str) -> None:
        """Invalidate a single cache entry."""
        self._store.pop(key, None)

    def __len__(self) -> int:
        return len(self._store)


class LRUCache:
    """
    Bounded cache with least-recently-used eviction.

    get() promotes the entry to most-recently-used; set() evicts the least
    recently used entry when the cache is at capacity. No TTL: freshness is
    the caller's job (the feed and the gateway overwrite entries on schedule).
    """

    def __init__(self, capacity: int = 500):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._store: "OrderedDict[str, Any]" = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: str) -> Optional[Any]:
        if key not in self._store:
            return None
        self._store.move_to_end(key)
        return self._store[key]

    def set(self, key: str, value: Any) -> None:
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self._capacity:
            self._store.popitem(last=False)
        self._store[key] = value

    def peek(self, key: str) -> Optional[Any]:
        """Read without touching recency."""
        return self._store.get(key)

    def keys(self) -> list:
        """Keys from least to most recently used."""
        return list(self._store.keys())

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)
