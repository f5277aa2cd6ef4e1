"""In-process read cache keyed by query-parameter tuples."""

from __future__ import annotations

import time
from typing import Any, Callable, Hashable, Optional

_MISSING = object()


class QueryCache:
    """TTL cache for read queries.

    Writes never touch individual keys: every write-producing phase calls
    `invalidate_all()` and the whole cache is dropped.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default

        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock() + self._ttl_seconds, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING


def cache_key(name: str, *params: Optional[Any]) -> tuple[Any, ...]:
    """Build a hashable cache key from a query name and its parameters."""

    normalized = tuple(tuple(param) if isinstance(param, list) else param for param in params)
    return (name, *normalized)
