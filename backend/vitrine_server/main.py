"""
Vitrine Server - Core assembly and lifecycle.

This module wires the engine components together:
- Document store (MongoDB or in-memory)
- Cache namespaces (Redis or in-memory)
- Hook registry (default hooks + caller hooks, then frozen)
- Resolver, Saver and DeletionCascade sharing the above

The HTTP layer embeds a RepositoryCore and calls its resolver, saver
and deletion cascade.

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is connected before the core reports started
    - The hook registry is frozen before any operation runs
    - stop() releases the store and every cache namespace

How to change safely:
    - Register extra hooks through the register_hooks callback only
    - Test the shutdown sequence when adding components
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

import json_log_formatter

from .cache import CacheSet, create_caches
from .config import ServerConfig
from .delete import DeletionCascade
from .hooks import HookRegistry
from .hooks.builtin import register_default_hooks
from .ownership import OwnershipManager
from .resolve import Resolver
from .save import PreviewStore, Saver
from .store import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


class RepositoryCore:
    """Vitrine Server core orchestrator.

    Attributes:
        config: Server configuration
        store: Document store
        caches: Cache namespaces
        hooks: Hook registry
        resolver: Reference-graph resolver
        saver: Cascading saver
        deletion: Deletion cascade
        ownership: Possession list manager

    Example:
        >>> core = RepositoryCore()
        >>> await core.start()
        >>> entity = await core.resolver.resolve(entity_id, Collection.ENTITY)
        >>> await core.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        store: DocumentStore | None = None,
        caches: CacheSet | None = None,
        register_hooks: Optional[Callable[[HookRegistry], None]] = None,
    ) -> None:
        """Initialize the core.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            store: Optional pre-built store (built from config otherwise)
            caches: Optional pre-built caches (built from config otherwise)
            register_hooks: Called with the registry before it is frozen
        """
        self.config = config or ServerConfig.from_env()
        self._register_hooks = register_hooks
        self._running = False

        self.store: DocumentStore = store or create_document_store(self.config)
        self.caches: CacheSet = caches or create_caches(self.config)
        self.hooks = HookRegistry()
        self.ownership = OwnershipManager(self.store)
        self.resolver = Resolver(
            self.store,
            self.caches.entities,
            self.hooks,
            max_depth=self.config.resolver.max_depth,
        )
        self.saver = Saver(
            self.store,
            self.caches.entities,
            self.hooks,
            self.resolver,
            self.ownership,
            PreviewStore(self.config.upload.upload_dir, self.config.upload.public_prefix),
        )
        self.deletion = DeletionCascade(self.store, self.caches.entities, self.hooks, self.ownership)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Connect the store, register hooks and freeze the registry."""
        if self._running:
            logger.warning("Core already running")
            return

        logger.info("Starting Vitrine core")
        self.config.log_config()

        try:
            Path(self.config.upload.upload_dir).mkdir(parents=True, exist_ok=True)

            await self.store.connect()
            logger.info("Document store connected")

            register_default_hooks(self.hooks, self.store, self.caches.entities)
            if self._register_hooks is not None:
                self._register_hooks(self.hooks)
            self.hooks.freeze()

            self._running = True
            logger.info("Vitrine core started successfully")
        except Exception as e:
            logger.error(f"Core startup failed: {e}", exc_info=True)
            await self._release()
            raise

    async def stop(self) -> None:
        """Stop the core gracefully."""
        if not self._running:
            return

        logger.info("Stopping Vitrine core")
        await self._release()
        self._running = False
        logger.info("Vitrine core stopped")

    async def _release(self) -> None:
        await self.caches.close()
        await self.store.close()

    async def __aenter__(self) -> RepositoryCore:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
