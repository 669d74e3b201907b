"""
In-memory cache backend for testing and local development.

Invariants:
    - Each instance owns its own dictionary (one namespace per instance)
    - Expired entries are dropped lazily on access
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple

from ..errors import CacheError
from .base import Cache


class InMemoryCache(Cache):
    """Dictionary-backed Cache.

    Example:
        >>> cache = InMemoryCache("entities", default_ttl=60)
        >>> await cache.set("entity::1", {"_id": "1"})
        True
        >>> await cache.get("entity::1")
        {'_id': '1'}
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(namespace, default_ttl)
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._clock = clock
        self._failing = False

    def _check(self) -> None:
        if self._failing:
            raise CacheError("Injected cache failure", namespace=self.namespace)

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return payload

    async def _get_raw(self, key: str) -> Optional[str]:
        self._check()
        return self._live(key)

    async def _set_raw(self, key: str, payload: str, ttl: int) -> None:
        self._check()
        expires_at = self._clock() + ttl if ttl > 0 else None
        self._entries[key] = (payload, expires_at)

    async def _delete_raw(self, key: str) -> None:
        self._check()
        self._entries.pop(key, None)

    async def _has_raw(self, key: str) -> bool:
        self._check()
        return self._live(key) is not None

    async def _flush_raw(self) -> None:
        self._check()
        self._entries.clear()

    # Testing helpers

    def set_failing(self, failing: bool = True) -> None:
        """Make every backend call raise CacheError (for testing)."""
        self._failing = failing

    def keys(self) -> list[str]:
        """Live keys (for testing)."""
        return [key for key in list(self._entries) if self._live(key) is not None]
