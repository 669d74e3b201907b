"""
Unit tests for cache namespaces.

Tests cover:
- In-memory cache get/set/TTL
- Failure degradation to a miss
- Redis backend (fakeredis) and namespace isolation
- Database allocation conflicts
"""

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from backend.vitrine_server.cache import (
    CacheNamespace,
    InMemoryCache,
    RedisCache,
    RedisDatabaseAllocator,
    create_caches,
)
from backend.vitrine_server.config import CacheBackend, RedisConfig, ServerConfig
from backend.vitrine_server.errors import CacheConfigError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenRedis:
    """Client whose every command fails like a lost connection."""

    async def get(self, key):
        raise RedisConnectionError("connection lost")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection lost")

    async def delete(self, key):
        raise RedisConnectionError("connection lost")

    async def exists(self, key):
        raise RedisConnectionError("connection lost")

    async def flushdb(self):
        raise RedisConnectionError("connection lost")


class TestInMemoryCache:
    """Tests for InMemoryCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return InMemoryCache("entities", default_ttl=60, clock=clock)

    @pytest.mark.asyncio
    async def test_set_get(self, cache):
        assert await cache.set("entity::E1", {"_id": "E1", "name": "Vase"})

        assert await cache.get("entity::E1") == {"_id": "E1", "name": "Vase"}
        assert await cache.has("entity::E1")

    @pytest.mark.asyncio
    async def test_miss(self, cache):
        assert await cache.get("entity::missing") is None
        assert not await cache.has("entity::missing")

    @pytest.mark.asyncio
    async def test_value_is_snapshot(self, cache):
        """Mutating the stored object afterwards does not change the cache."""
        doc = {"_id": "E1", "annotations": {}}
        await cache.set("entity::E1", doc)

        doc["annotations"]["A1"] = {"_id": "A1"}

        assert await cache.get("entity::E1") == {"_id": "E1", "annotations": {}}

    @pytest.mark.asyncio
    async def test_default_ttl_expires(self, cache, clock):
        await cache.set("k", 1)

        clock.now += 59
        assert await cache.get("k") == 1

        clock.now += 1
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_non_positive_ttl_never_expires(self, cache, clock):
        await cache.set("k", 1, ttl=-1)

        clock.now += 10**9

        assert await cache.get("k") == 1

    @pytest.mark.asyncio
    async def test_delete_and_flush(self, cache):
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a")
        assert await cache.get("a") is None

        assert await cache.flush()
        assert cache.keys() == []

    @pytest.mark.asyncio
    async def test_failures_degrade_to_miss(self, cache):
        """A failing backend never raises."""
        await cache.set("k", 1)
        cache.set_failing()

        assert await cache.get("k") is None
        assert await cache.set("k", 2) is False
        assert await cache.delete("k") is False
        assert await cache.has("k") is False
        assert await cache.flush() is False

        cache.set_failing(False)
        assert await cache.get("k") == 1

    @pytest.mark.asyncio
    async def test_unserializable_value(self, cache):
        circular = {}
        circular["self"] = circular

        assert await cache.set("k", circular) is False
        assert await cache.get("k") is None


class TestRedisCache:
    """Tests for RedisCache backed by fakeredis."""

    @pytest.fixture
    def server(self):
        return fakeredis.FakeServer()

    def make(self, server, namespace, db, ttl=60):
        client = fakeredis.FakeAsyncRedis(server=server, db=db, decode_responses=True)
        return RedisCache(namespace, ttl, client, db)

    @pytest.mark.asyncio
    async def test_set_get_with_ttl(self, server):
        cache = self.make(server, "entities", 1)

        await cache.set("entity::E1", {"_id": "E1"})

        assert await cache.get("entity::E1") == {"_id": "E1"}
        ttl = await cache._client.ttl("entity::E1")
        assert 0 < ttl <= 60

    @pytest.mark.asyncio
    async def test_no_expiry(self, server):
        cache = self.make(server, "checksums", 6, ttl=-1)

        await cache.set("file.glb", "abc123")

        assert await cache._client.ttl("file.glb") == -1

    @pytest.mark.asyncio
    async def test_flush_is_namespace_local(self, server):
        """Flushing one namespace leaves the others untouched."""
        entities = self.make(server, "entities", 1)
        sessions = self.make(server, "sessions", 3)
        await entities.set("same-key", "entity")
        await sessions.set("same-key", "session")

        await entities.flush()

        assert await entities.get("same-key") is None
        assert await sessions.get("same-key") == "session"

    @pytest.mark.asyncio
    async def test_connection_errors_degrade(self):
        cache = RedisCache("entities", 60, BrokenRedis(), 1)

        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.delete("k") is False
        assert await cache.has("k") is False
        assert await cache.flush() is False


class TestCreateCaches:
    """Tests for create_caches()."""

    def test_memory_backend(self):
        config = ServerConfig(cache_backend=CacheBackend.MEMORY)

        caches = create_caches(config)

        assert set(caches.caches) == set(CacheNamespace)
        assert caches.entities.default_ttl == 1
        assert caches[CacheNamespace.CHECKSUMS].default_ttl == -1
        assert caches[CacheNamespace.SESSIONS] is not caches[CacheNamespace.RESOLVE]

    def test_redis_backend_uses_offset_databases(self):
        server = fakeredis.FakeServer()
        config = ServerConfig(redis=RedisConfig(db_offset=10))

        caches = create_caches(
            config,
            client_factory=lambda db: fakeredis.FakeAsyncRedis(server=server, db=db, decode_responses=True),
        )

        assert caches.entities.db == 11
        assert caches[CacheNamespace.CHECKSUMS].db == 16

    def test_database_reuse_raises(self):
        """Two namespaces may never share a database."""
        allocator = RedisDatabaseAllocator()
        allocator.claim(1, "entities")

        with pytest.raises(CacheConfigError, match="already in use"):
            allocator.claim(1, "users")

    def test_overlapping_offsets_raise(self):
        server = fakeredis.FakeServer()
        allocator = RedisDatabaseAllocator()

        def factory(db):
            return fakeredis.FakeAsyncRedis(server=server, db=db, decode_responses=True)

        create_caches(ServerConfig(redis=RedisConfig(db_offset=0)), allocator, factory)

        with pytest.raises(CacheConfigError):
            create_caches(ServerConfig(redis=RedisConfig(db_offset=2)), allocator, factory)
