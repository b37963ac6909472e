"""Session-scoped lookup cache.

A ``LookupCache`` lives for one validation or execution session and is passed
by reference into the component that needs it. There is no module-level
instance: two sessions never share cached entity bundles.

Keys are composite strings built with :func:`cache_key`
(``"bundle:42"``, ``"rows:word_forms"``).

Tags:
    cache, lookup, session, lexspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


def cache_key(*parts: Any) -> str:
    """Join key parts with ``:`` (``cache_key("bundle", 42) == "bundle:42"``)."""
    return ":".join(str(part) for part in parts)


class LookupCache:
    """Bounded in-memory cache with LRU eviction.

    Attributes:
        max_size: Maximum number of keys before LRU eviction.

    Example:
        cache = LookupCache(max_size=500)
        bundle = cache.get_or_load(cache_key("bundle", 7), lambda: reader.load_bundle(7))
    """

    def __init__(self, *, max_size: int = 10_000):
        self._store: dict[str, Any] = {}
        self._access_order: list[str] = []
        self._max_size = max_size
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key."""
        if key not in self._store:
            self.misses += 1
            return None
        self.hits += 1
        self._touch(key)
        return self._store[key]

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting the least recently used key at capacity."""
        if key not in self._store and len(self._store) >= self._max_size:
            if self._access_order:
                lru_key = self._access_order.pop(0)
                self._store.pop(lru_key, None)
        self._store[key] = value
        self._touch(key)

    def get_or_load(self, key: str, loader: Callable[[], T]) -> T:
        """Return the cached value or call ``loader`` and cache its result."""
        if key in self._store:
            self.hits += 1
            self._touch(key)
            return self._store[key]
        self.misses += 1
        value = loader()
        self.set(key, value)
        return value

    def delete(self, key: str) -> None:
        """Remove a key from the cache."""
        self._store.pop(key, None)
        if key in self._access_order:
            self._access_order.remove(key)

    def exists(self, key: str) -> bool:
        return key in self._store

    def clear(self) -> None:
        """Remove all keys and reset counters."""
        self._store.clear()
        self._access_order.clear()
        self.hits = 0
        self.misses = 0

    def size(self) -> int:
        """Return current number of cached keys."""
        return len(self._store)

    def _touch(self, key: str) -> None:
        if key in self._access_order:
            self._access_order.remove(key)
        self._access_order.append(key)


__all__ = ["LookupCache", "cache_key"]
