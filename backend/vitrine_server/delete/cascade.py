"""
Deletion with dependent cleanup.

Deleting a document:
    1. Fetch it; a missing document is a failed outcome
    2. delete_one; nothing deleted is a failed outcome
    3. Invalidate its entities cache entry
    4. Remove it from the acting user's possession list
    5. Run onDelete hooks on the removed document
    6. Collection-specific cleanup:
       - entity: drop it from every compilation's entities map and delete
         the annotations about it that belong to no compilation
       - compilation: delete the annotations attached to it

Invariants:
    - The outcome reflects the primary delete only
    - Cleanup failures (steps 3 to 6) are logged, never surfaced
    - Annotations attached to a compilation survive the deletion of the
      entity they annotate

How to change safely:
    - Reuse the filters in parents.py so resolution and cleanup agree
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..cache import Cache
from ..errors import StoreError
from ..hooks import HookPhase, HookRegistry
from ..model import Collection, cache_key
from ..ownership import ActingUser, OwnershipManager
from ..parents import (
    compilation_annotations_filter,
    compilations_containing_filter,
    entity_annotations_filter,
)
from ..store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of delete_any.

    Attributes:
        success: Whether the document was deleted
        error: Reason when success is False
    """

    success: bool
    error: Optional[str] = None


class DeletionCascade:
    """Deletes documents and the records that depend on them.

    Example:
        >>> cascade = DeletionCascade(store, caches.entities, hooks, ownership)
        >>> await cascade.delete_any(Collection.ENTITY, "E1", user)
        DeleteOutcome(success=True, error=None)
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Cache,
        hooks: HookRegistry,
        ownership: OwnershipManager,
    ) -> None:
        self._store = store
        self._cache = cache
        self._hooks = hooks
        self._ownership = ownership

    async def delete_any(self, collection: Collection, ident: str, acting_user: ActingUser) -> DeleteOutcome:
        """Delete a document and clean up after it.

        Args:
            collection: Collection of the document
            ident: Document identifier
            acting_user: User on whose behalf the delete runs

        Returns:
            DeleteOutcome describing the primary delete
        """
        try:
            doc = await self._store.find_one(collection.value, {"_id": ident})
        except StoreError as e:
            logger.warning(f"Lookup before deleting {collection.value} {ident} failed: {e}")
            return DeleteOutcome(False, f"Failed to look up {collection.value}")
        if doc is None:
            return DeleteOutcome(False, f"Failed to find {collection.value}")

        try:
            result = await self._store.delete_one(collection.value, {"_id": ident})
        except StoreError as e:
            logger.error(f"Deleting {collection.value} {ident} failed: {e}", exc_info=True)
            return DeleteOutcome(False, f"Failed to delete {collection.value}")
        if result.deleted_count == 0:
            return DeleteOutcome(False, f"Failed to delete {collection.value}")

        logger.info(f"Deleted {collection.value} {ident}", extra={"user": acting_user.id})

        await self._cache.delete(cache_key(collection, ident))

        try:
            await self._ownership.undo_owner_of(acting_user, collection, [ident])
        except StoreError as e:
            logger.warning(f"Could not remove {collection.value} {ident} from possessions: {e}")

        await self._hooks.run_hooks(collection, HookPhase.ON_DELETE, doc, acting_user)

        try:
            if collection == Collection.ENTITY:
                await self._cleanup_entity(ident)
            elif collection == Collection.COMPILATION:
                await self._cleanup_compilation(ident)
        except StoreError as e:
            logger.warning(f"Cleanup after deleting {collection.value} {ident} failed: {e}")

        return DeleteOutcome(True)

    async def _cleanup_entity(self, ident: str) -> None:
        compilations = await self._store.find(
            Collection.COMPILATION.value, compilations_containing_filter(ident)
        )
        for compilation in compilations:
            await self._store.update_one(
                Collection.COMPILATION.value,
                {"_id": compilation["_id"]},
                {"$unset": {f"entities.{ident}": ""}},
            )
            await self._cache.delete(cache_key(Collection.COMPILATION, compilation["_id"]))

        removed = await self._store.delete_many(
            Collection.ANNOTATION.value, entity_annotations_filter(ident)
        )
        logger.debug(
            f"Entity {ident} cleanup: {len(compilations)} compilations updated, "
            f"{removed.deleted_count} annotations deleted"
        )

    async def _cleanup_compilation(self, ident: str) -> None:
        removed = await self._store.delete_many(
            Collection.ANNOTATION.value, compilation_annotations_filter(ident)
        )
        logger.debug(f"Compilation {ident} cleanup: {removed.deleted_count} annotations deleted")
