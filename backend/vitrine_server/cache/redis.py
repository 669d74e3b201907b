"""
Redis cache backend.

Each namespace is bound to its own logical Redis database so that
flushing one namespace never touches another.

Invariants:
    - One RedisCache per database index within a process
    - Responses are decoded to str (decode_responses=True)

How to change safely:
    - Keep flush() as FLUSHDB on the namespace's own database
    - Go through RedisDatabaseAllocator when adding namespaces
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Set

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..config import RedisConfig
from ..errors import CacheConfigError, CacheError
from .base import Cache

logger = logging.getLogger(__name__)


class RedisDatabaseAllocator:
    """Tracks which Redis database indices are in use."""

    def __init__(self) -> None:
        self._taken: Set[int] = set()
        self._lock = threading.Lock()

    def claim(self, db: int, namespace: str) -> None:
        """Reserve a database index.

        Raises:
            CacheConfigError: If the index is already claimed
        """
        with self._lock:
            if db in self._taken:
                raise CacheConfigError(
                    f"Redis database {db} already in use, cannot bind namespace '{namespace}'"
                )
            self._taken.add(db)

    def release(self, db: int) -> None:
        with self._lock:
            self._taken.discard(db)

    @property
    def taken(self) -> Set[int]:
        return set(self._taken)


class RedisCache(Cache):
    """Cache stored in one logical Redis database.

    Attributes:
        db: Redis database index of this namespace
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: int,
        client: aioredis.Redis,
        db: int,
    ) -> None:
        super().__init__(namespace, default_ttl)
        self.db = db
        self._client = client

    @classmethod
    def connect(
        cls,
        namespace: str,
        default_ttl: int,
        config: RedisConfig,
        db: int,
        allocator: Optional[RedisDatabaseAllocator] = None,
    ) -> RedisCache:
        """Build a cache bound to database db.

        Connections are opened lazily by redis-py on first command.

        Raises:
            CacheConfigError: If db is already claimed in allocator
        """
        if allocator is not None:
            allocator.claim(db, namespace)
        client = aioredis.Redis(
            host=config.host,
            port=config.port,
            db=db,
            password=config.password,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        logger.info(f"Cache namespace '{namespace}' bound to Redis db {db}")
        return cls(namespace, default_ttl, client, db)

    async def _get_raw(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise CacheError(f"Redis GET failed: {e}", namespace=self.namespace) from e

    async def _set_raw(self, key: str, payload: str, ttl: int) -> None:
        try:
            if ttl > 0:
                await self._client.set(key, payload, ex=ttl)
            else:
                await self._client.set(key, payload)
        except RedisError as e:
            raise CacheError(f"Redis SET failed: {e}", namespace=self.namespace) from e

    async def _delete_raw(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise CacheError(f"Redis DEL failed: {e}", namespace=self.namespace) from e

    async def _has_raw(self, key: str) -> bool:
        try:
            return await self._client.exists(key) > 0
        except RedisError as e:
            raise CacheError(f"Redis EXISTS failed: {e}", namespace=self.namespace) from e

    async def _flush_raw(self) -> None:
        try:
            await self._client.flushdb()
        except RedisError as e:
            raise CacheError(f"Redis FLUSHDB failed: {e}", namespace=self.namespace) from e

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning(f"Closing Redis client for '{self.namespace}' failed: {e}")
