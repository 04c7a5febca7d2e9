"""Cache capability for provider metadata and key sets.

The cache owns staleness: an entry past its TTL is simply absent.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Protocol


class Cache(Protocol):
    """Process-wide key/value cache with per-entry TTL."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl: int) -> None:
        pass


class MemoryCache:
    """In-process TTL cache.

    Concurrent writers may populate the same key; last write wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        if ttl <= 0:
            return
        self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> None:
        self._entries.clear()
