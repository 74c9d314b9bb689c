"""Short-lived key/value cache with lazy expiry.

Used for query results, cached search-and-extract runs and expansion
fingerprints. Expired entries are dropped when read; there is no background
sweep. The clock is injectable so tests can move time forward.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheLookup:
    hit: bool
    value: Any = None


class Cache(Protocol):
    def get(self, key: str) -> CacheLookup: ...
    def set(self, key: str, value: Any, ttl_s: float) -> None: ...
    def delete(self, key: str) -> None: ...
    def clear(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """In-process TTL cache. Values are stored as given and never mutated here."""

    def __init__(self, *, clock: Clock | None = None, default_ttl_s: float = 300.0):
        self._clock: Clock = clock or time.monotonic
        self._default_ttl_s = default_ttl_s
        self._store: dict[str, _Entry] = {}

    def get(self, key: str) -> CacheLookup:
        entry = self._store.get(key)
        if entry is None:
            return CacheLookup(hit=False)
        if self._clock() > entry.expires_at:
            del self._store[key]
            return CacheLookup(hit=False)
        return CacheLookup(hit=True, value=entry.value)

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else ttl_s
        self._store[key] = _Entry(value=value, expires_at=self._clock() + max(ttl, 0.0))

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


_cache: TTLCache | None = None


def get_cache() -> TTLCache:
    """Process-wide default cache used when no cache is injected."""
    global _cache
    if _cache is None:
        _cache = TTLCache()
    return _cache
