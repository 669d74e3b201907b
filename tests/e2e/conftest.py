"""
E2E test fixtures for Vitrine.

These tests require a running MongoDB and Redis (e.g. the services of a
local docker-compose stack). Connection settings are read from the usual
environment variables (MONGO_URL, REDIS_HOST, ...).
"""

import os
import socket
import time
import uuid
from dataclasses import replace

import pytest
from pymongo import AsyncMongoClient

from backend.vitrine_server.config import (
    CacheBackend,
    RedisConfig,
    ServerConfig,
    StoreBackend,
    UploadConfig,
)
from backend.vitrine_server.main import RepositoryCore
from backend.vitrine_server.ownership import ActingUser

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("VITRINE_E2E_TESTS", "0") == "1"


def pytest_collection_modifyitems(config, items):
    if E2E_ENABLED:
        return
    skip = pytest.mark.skip(reason="E2E tests disabled. Set VITRINE_E2E_TESTS=1 to enable.")
    for item in items:
        if "e2e" in item.nodeid.split("/"):
            item.add_marker(skip)


def wait_for_service(host: str, port: int, timeout: int = 30) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def base_config() -> ServerConfig:
    config = ServerConfig.from_env()
    if not config.mongo.url:
        assert wait_for_service(config.mongo.host, config.mongo.port), "MongoDB not ready"
    assert wait_for_service(config.redis.host, config.redis.port), "Redis not ready"
    return config


@pytest.fixture
async def core(base_config, tmp_path):
    """A started core on throwaway databases."""
    suffix = uuid.uuid4().hex[:8]
    config = replace(
        base_config,
        store_backend=StoreBackend.MONGO,
        cache_backend=CacheBackend.REDIS,
        mongo=replace(
            base_config.mongo,
            repository_db=f"vitrine_e2e_{suffix}",
            accounts_db=f"vitrine_e2e_accounts_{suffix}",
        ),
        redis=RedisConfig(
            host=base_config.redis.host,
            port=base_config.redis.port,
            db_offset=int(os.environ.get("VITRINE_E2E_REDIS_OFFSET", "8")),
            password=base_config.redis.password,
        ),
        upload=UploadConfig(upload_dir=str(tmp_path / "uploads")),
    )

    core = RepositoryCore(config)
    await core.start()
    await core.caches.flush_all()
    try:
        yield core
    finally:
        await core.caches.flush_all()
        await core.stop()
        client = AsyncMongoClient(config.mongo.connection_url)
        await client.drop_database(config.mongo.repository_db)
        await client.drop_database(config.mongo.accounts_db)
        await client.close()


@pytest.fixture
def user() -> ActingUser:
    return ActingUser(_id=uuid.uuid4().hex, username="e2e", fullname="E2E User")
