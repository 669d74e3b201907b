"""
Default hooks keeping derived filterable fields of parents up to date.

Compilations expose __licenses, __mediaTypes and __downloadable computed
from their entities; entities expose __licenses from their digital
entity. When a child changes, its parents are re-derived:
- entity afterSave: every compilation containing the entity
- digitalentity afterSave: every entity pointing at it, then their
  compilations

Invariants:
    - Hooks return the document they received unchanged
    - Parent cache entries are invalidated after each parent update
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..cache import Cache
from ..model import Collection, cache_key
from ..ownership import ActingUser
from ..parents import find_parent_compilations, find_parent_entities
from ..save.transforms import derive_compilation_filterables, flatten_id_map
from ..store import DocumentStore
from .registry import HookPhase, HookRegistry

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class FilterablePropertyUpdater:
    """Re-derives filterable fields of parent documents."""

    def __init__(self, store: DocumentStore, cache: Cache) -> None:
        self._store = store
        self._cache = cache

    async def refresh_compilations_of(self, entity_id: str) -> int:
        """Recompute compilations containing entity_id. Returns how many."""
        compilations = await find_parent_compilations(self._store, entity_id)
        for compilation in compilations:
            entity_ids = list(flatten_id_map(compilation.get("entities")))
            entities = await self._store.find(
                Collection.ENTITY.value, {"_id": {"$in": entity_ids}}
            )
            await self._store.update_one(
                Collection.COMPILATION.value,
                {"_id": compilation["_id"]},
                {"$set": derive_compilation_filterables(entities)},
            )
            await self._cache.delete(cache_key(Collection.COMPILATION, compilation["_id"]))
        return len(compilations)

    async def on_entity_saved(self, entity: Document, user: Optional[ActingUser]) -> Document:
        count = await self.refresh_compilations_of(entity["_id"])
        if count:
            logger.debug(f"Refreshed {count} compilations of entity {entity['_id']}")
        return entity

    async def on_digital_entity_saved(self, digital_entity: Document, user: Optional[ActingUser]) -> Document:
        licence = digital_entity.get("licence")
        for entity in await find_parent_entities(self._store, digital_entity["_id"]):
            await self._store.update_one(
                Collection.ENTITY.value,
                {"_id": entity["_id"]},
                {"$set": {"__licenses": [licence] if licence else []}},
            )
            await self._cache.delete(cache_key(Collection.ENTITY, entity["_id"]))
            await self.refresh_compilations_of(entity["_id"])
        return digital_entity


def register_default_hooks(hooks: HookRegistry, store: DocumentStore, cache: Cache) -> FilterablePropertyUpdater:
    """Register the built-in afterSave hooks.

    Args:
        hooks: Registry (must not be frozen yet)
        store: Document store the hooks update
        cache: Entities cache to invalidate

    Returns:
        The updater backing the hooks
    """
    updater = FilterablePropertyUpdater(store, cache)
    hooks.add_hook(Collection.ENTITY, HookPhase.AFTER_SAVE, updater.on_entity_saved)
    hooks.add_hook(Collection.DIGITAL_ENTITY, HookPhase.AFTER_SAVE, updater.on_digital_entity_saved)
    return updater
