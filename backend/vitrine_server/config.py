"""
Configuration management for Vitrine Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep cache namespace TTL defaults in sync with CacheNamespace
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported document store backends."""

    MONGO = "mongo"
    MEMORY = "memory"


class CacheBackend(Enum):
    """Supported cache backends."""

    REDIS = "redis"
    MEMORY = "memory"


@dataclass(frozen=True)
class MongoConfig:
    """MongoDB document store configuration.

    Attributes:
        url: Full connection URL (takes precedence over host/port)
        host: MongoDB host
        port: MongoDB port
        repository_db: Database holding the document collections
        accounts_db: Database holding user accounts and possession lists
        connect_retries: Connection attempts before giving up
        retry_delay_ms: Initial delay between attempts (doubles each time)
    """

    url: str | None = None
    host: str = "localhost"
    port: int = 27017
    repository_db: str = "objectrepository"
    accounts_db: str = "accounts"
    connect_retries: int = 5
    retry_delay_ms: int = 500

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("MONGO_URL"),
            host=os.getenv("MONGO_HOST", "localhost"),
            port=int(os.getenv("MONGO_PORT", "27017")),
            repository_db=os.getenv("MONGO_REPOSITORY_DB", "objectrepository"),
            accounts_db=os.getenv("MONGO_ACCOUNTS_DB", "accounts"),
            connect_retries=int(os.getenv("MONGO_CONNECT_RETRIES", "5")),
            retry_delay_ms=int(os.getenv("MONGO_RETRY_DELAY_MS", "500")),
        )

    @property
    def connection_url(self) -> str:
        return self.url or f"mongodb://{self.host}:{self.port}/"


@dataclass(frozen=True)
class RedisConfig:
    """Redis cache backend configuration.

    Each cache namespace lives in its own logical database,
    numbered db_offset + namespace index.

    Attributes:
        host: Redis host
        port: Redis port
        db_offset: First database index used by the namespaces
        password: Optional password
    """

    host: str = "localhost"
    port: int = 6379
    db_offset: int = 0
    password: str | None = None

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db_offset=int(os.getenv("REDIS_DB_OFFSET", "0")),
            password=os.getenv("REDIS_PASSWORD"),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Default TTLs (seconds) per cache namespace. Values <= 0 never expire."""

    entities_ttl: int = 1
    users_ttl: int = 1
    sessions_ttl: int = 60
    resolve_ttl: int = 60
    explore_ttl: int = 60
    checksums_ttl: int = -1

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        return cls(
            entities_ttl=int(os.getenv("CACHE_TTL_ENTITIES", "1")),
            users_ttl=int(os.getenv("CACHE_TTL_USERS", "1")),
            sessions_ttl=int(os.getenv("CACHE_TTL_SESSIONS", "60")),
            resolve_ttl=int(os.getenv("CACHE_TTL_RESOLVE", "60")),
            explore_ttl=int(os.getenv("CACHE_TTL_EXPLORE", "60")),
            checksums_ttl=int(os.getenv("CACHE_TTL_CHECKSUMS", "-1")),
        )


@dataclass(frozen=True)
class ResolverConfig:
    """Resolver configuration.

    Attributes:
        max_depth: Default recursion budget for nested resolution. The
            deepest chain (compilation -> entity -> digital entity ->
            physical entity -> person -> institution -> address) needs 6.
    """

    max_depth: int = 10

    @classmethod
    def from_env(cls) -> ResolverConfig:
        """Load configuration from environment variables."""
        return cls(max_depth=int(os.getenv("RESOLVER_MAX_DEPTH", "10")))


@dataclass(frozen=True)
class UploadConfig:
    """Upload directory configuration.

    Attributes:
        upload_dir: Directory where inline preview images are persisted
        public_prefix: URL prefix under which upload_dir is served
    """

    upload_dir: str = "./uploads"
    public_prefix: str = ""

    @classmethod
    def from_env(cls) -> UploadConfig:
        """Load configuration from environment variables."""
        return cls(
            upload_dir=os.getenv("UPLOAD_DIR", "./uploads"),
            public_prefix=os.getenv("PUBLIC_PREVIEW_PREFIX", ""),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        store_backend: Which document store backend to use
        cache_backend: Which cache backend to use
        mongo: MongoDB configuration (if store_backend is MONGO)
        redis: Redis configuration (if cache_backend is REDIS)
        cache: Cache TTL configuration
        resolver: Resolver configuration
        upload: Upload directory configuration
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.MONGO
    cache_backend: CacheBackend = CacheBackend.REDIS
    mongo: MongoConfig = field(default_factory=MongoConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        store_str = os.getenv("STORE_BACKEND", "mongo").lower()
        try:
            store_backend = StoreBackend(store_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{store_str}'. Must be one of: mongo, memory")

        cache_str = os.getenv("CACHE_BACKEND", "redis").lower()
        try:
            cache_backend = CacheBackend(cache_str)
        except ValueError:
            raise ValueError(f"Invalid CACHE_BACKEND '{cache_str}'. Must be one of: redis, memory")

        config = cls(
            store_backend=store_backend,
            cache_backend=cache_backend,
            mongo=MongoConfig.from_env(),
            redis=RedisConfig.from_env(),
            cache=CacheConfig.from_env(),
            resolver=ResolverConfig.from_env(),
            upload=UploadConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.resolver.max_depth < 0:
            raise ValueError("RESOLVER_MAX_DEPTH must be >= 0")

        if self.store_backend == StoreBackend.MONGO:
            if not self.mongo.repository_db:
                raise ValueError("MONGO_REPOSITORY_DB is required when STORE_BACKEND=mongo")
            if self.mongo.connect_retries < 1:
                raise ValueError("MONGO_CONNECT_RETRIES must be >= 1")

        if self.cache_backend == CacheBackend.REDIS and self.redis.db_offset < 0:
            raise ValueError("REDIS_DB_OFFSET must be >= 0")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.upload.upload_dir):
            logger.warning(
                f"Upload directory does not exist: {self.upload.upload_dir}. "
                "It will be created on first preview write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "cache_backend": self.cache_backend.value,
                "mongo_host": self.mongo.host
                if self.store_backend == StoreBackend.MONGO and not self.mongo.url
                else None,
                "mongo_repository_db": self.mongo.repository_db,
                "redis_host": self.redis.host
                if self.cache_backend == CacheBackend.REDIS
                else None,
                "redis_db_offset": self.redis.db_offset,
                "resolver_max_depth": self.resolver.max_depth,
                "upload_dir": self.upload.upload_dir,
                "log_level": self.observability.log_level,
            },
        )
