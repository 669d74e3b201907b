"""
Cache namespaces and the factory that builds them.

Namespaces and their Redis database index (relative to db_offset):

    entities   1   resolved documents, keyed "<collection>::<id>"
    users      2   user records
    sessions   3   session payloads
    resolve    4   resolver intermediates
    explore    5   search result pages
    checksums  6   file checksums (no expiry)

Invariants:
    - Every namespace is physically isolated from every other
    - Binding two namespaces to the same database raises CacheConfigError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, TYPE_CHECKING

from .base import Cache
from .memory import InMemoryCache
from .redis import RedisCache, RedisDatabaseAllocator

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class CacheNamespace(Enum):
    """Cache namespaces."""

    ENTITIES = "entities"
    USERS = "users"
    SESSIONS = "sessions"
    RESOLVE = "resolve"
    EXPLORE = "explore"
    CHECKSUMS = "checksums"

    @property
    def index(self) -> int:
        return _INDEX[self]


_INDEX: Dict[CacheNamespace, int] = {
    CacheNamespace.ENTITIES: 1,
    CacheNamespace.USERS: 2,
    CacheNamespace.SESSIONS: 3,
    CacheNamespace.RESOLVE: 4,
    CacheNamespace.EXPLORE: 5,
    CacheNamespace.CHECKSUMS: 6,
}


@dataclass
class CacheSet:
    """One cache per namespace."""

    caches: Dict[CacheNamespace, Cache]

    def __getitem__(self, namespace: CacheNamespace) -> Cache:
        return self.caches[namespace]

    @property
    def entities(self) -> Cache:
        return self.caches[CacheNamespace.ENTITIES]

    async def flush_all(self) -> None:
        for cache in self.caches.values():
            await cache.flush()

    async def close(self) -> None:
        for cache in self.caches.values():
            await cache.close()


def _ttls(config: "ServerConfig") -> Dict[CacheNamespace, int]:
    return {
        CacheNamespace.ENTITIES: config.cache.entities_ttl,
        CacheNamespace.USERS: config.cache.users_ttl,
        CacheNamespace.SESSIONS: config.cache.sessions_ttl,
        CacheNamespace.RESOLVE: config.cache.resolve_ttl,
        CacheNamespace.EXPLORE: config.cache.explore_ttl,
        CacheNamespace.CHECKSUMS: config.cache.checksums_ttl,
    }


def create_caches(
    config: "ServerConfig",
    allocator: Optional[RedisDatabaseAllocator] = None,
    client_factory: Optional[Callable[[int], object]] = None,
) -> CacheSet:
    """Build every cache namespace for the configured backend.

    Args:
        config: Server configuration
        allocator: Database allocator shared across calls (a fresh one
            is used when omitted)
        client_factory: Builds a redis client for a database index
            (tests pass fakeredis here)

    Returns:
        CacheSet with one cache per namespace

    Raises:
        CacheConfigError: If two namespaces would share a Redis database
    """
    from ..config import CacheBackend

    ttls = _ttls(config)
    if config.cache_backend == CacheBackend.MEMORY:
        return CacheSet({ns: InMemoryCache(ns.value, ttls[ns]) for ns in CacheNamespace})

    allocator = allocator or RedisDatabaseAllocator()
    caches: Dict[CacheNamespace, Cache] = {}
    for ns in CacheNamespace:
        db = config.redis.db_offset + ns.index
        if client_factory is None:
            caches[ns] = RedisCache.connect(ns.value, ttls[ns], config.redis, db, allocator)
        else:
            allocator.claim(db, ns.value)
            caches[ns] = RedisCache(ns.value, ttls[ns], client_factory(db), db)
    return CacheSet(caches)
