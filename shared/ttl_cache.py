"""
Bounded in-process TTL cache.

Used as a read-through performance layer in front of the key-value store;
never the system of record. Entries expire lazily on read and are also
dropped by ``purge_expired`` (run periodically by the owning service). When
full, the oldest inserted entry is evicted.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Size-bounded mapping whose entries expire after ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[V, float]]" = OrderedDict()

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
