"""
Base class for namespaced, best-effort caches.

A Cache is a key-value store scoped to one namespace. Backends implement
the raw operations; the public methods here add JSON serialization, the
namespace's default TTL and failure isolation.

Invariants:
    - Values are serialized on set, so later mutation of the caller's
      object never reaches the cache
    - Any backend error is logged and treated as a miss: get returns None,
      set/delete/flush return False
    - flush() only clears this cache's namespace

How to change safely:
    - Never let a backend exception escape a public method
    - TTL <= 0 means "never expire" in every backend
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Cache(ABC):
    """Namespaced key-value cache with default TTL.

    Attributes:
        namespace: Namespace name (used in log records)
        default_ttl: TTL in seconds applied when set() is called without one
    """

    def __init__(self, namespace: str, default_ttl: int) -> None:
        self.namespace = namespace
        self.default_ttl = default_ttl

    @abstractmethod
    async def _get_raw(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def _set_raw(self, key: str, payload: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def _delete_raw(self, key: str) -> None:
        ...

    @abstractmethod
    async def _has_raw(self, key: str) -> bool:
        ...

    @abstractmethod
    async def _flush_raw(self) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources."""

    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value.

        Args:
            key: Cache key

        Returns:
            The deserialized value, or None on miss or backend failure
        """
        try:
            payload = await self._get_raw(key)
            if payload is None:
                return None
            return json.loads(payload)
        except Exception as e:
            logger.warning(
                f"Cache get failed, treating as miss: {e}",
                extra={"namespace": self.namespace, "key": key},
            )
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a value.

        Args:
            key: Cache key
            value: JSON-serializable value; ObjectId and datetime come back as
                strings, so store reads hand over documents with string ids
            ttl: TTL in seconds; None uses the namespace default, <= 0 never expires

        Returns:
            True if the value was stored
        """
        try:
            payload = json.dumps(value, default=str)
            await self._set_raw(key, payload, self.default_ttl if ttl is None else ttl)
            return True
        except Exception as e:
            logger.warning(
                f"Cache set failed: {e}",
                extra={"namespace": self.namespace, "key": key},
            )
            return False

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns False if the backend failed."""
        try:
            await self._delete_raw(key)
            return True
        except Exception as e:
            logger.warning(
                f"Cache delete failed: {e}",
                extra={"namespace": self.namespace, "key": key},
            )
            return False

    async def has(self, key: str) -> bool:
        try:
            return await self._has_raw(key)
        except Exception as e:
            logger.warning(
                f"Cache has failed: {e}",
                extra={"namespace": self.namespace, "key": key},
            )
            return False

    async def flush(self) -> bool:
        """Clear every key of this namespace."""
        try:
            await self._flush_raw()
            logger.debug("Cache namespace flushed", extra={"namespace": self.namespace})
            return True
        except Exception as e:
            logger.warning(f"Cache flush failed: {e}", extra={"namespace": self.namespace})
            return False
