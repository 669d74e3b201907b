"""
Best-effort caching for Vitrine Server.

This module provides namespaced caches backed by:
- Redis (production, one logical database per namespace)
- In-memory dictionaries (for testing)

Invariants:
    - The engine is correct with the cache entirely unavailable
    - Cache failures are logged and degrade to a miss
"""

from .base import Cache
from .memory import InMemoryCache
from .namespaces import CacheNamespace, CacheSet, create_caches
from .redis import RedisCache, RedisDatabaseAllocator

__all__ = [
    "Cache",
    "CacheNamespace",
    "CacheSet",
    "create_caches",
    "InMemoryCache",
    "RedisCache",
    "RedisDatabaseAllocator",
]
