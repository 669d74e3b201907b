"""
Cascading, non-transactional saver.

Saving a document:
    1. None fails; a bare reference or partial document with an id is a
       no-op success; a mapping with neither is rejected
    2. An empty identifier is replaced by a freshly minted one, written
       into the incoming mapping so the parent sees it
    3. The document is validated (and annotation permissions checked)
    4. The entities cache entry is invalidated
    5. Nested children are saved first, phase by phase, each phase
       concurrently; a failing child is logged and does not fail the parent
    6. The collection transform runs on a deep copy, then onTransform hooks;
       a store failure while reading for the transform returns False
    7. _id is stripped and the document upserted with $set
    8. afterSave hooks run whether or not the write succeeded
    9. The saver's user is recorded as owner (possession list)

Invariants:
    - Children are written before their parent
    - The incoming graph is only mutated to fill in minted identifiers
    - A store failure returns False, never raises
    - There is no rollback: a parent failure leaves saved children in place

How to change safely:
    - Keep child extraction (_children) and flattening (transforms.py) in
      sync, or the parent will reference children that were never saved
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..cache import Cache
from ..errors import PermissionDeniedError, StoreError, ValidationError
from ..hooks import HookPhase, HookRegistry
from ..model import (
    Collection,
    Reference,
    cache_key,
    classify,
    get_definition,
    is_valid_id,
    new_object_id,
)
from ..ownership import ActingUser, OwnershipManager
from ..resolve import Resolver
from ..store import DocumentStore
from .previews import PreviewStore
from .transforms import DocumentTransformer

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


@dataclass(frozen=True)
class AnnotationPermissions:
    """Pre-computed permission facts for an annotation save.

    Attributes:
        is_annotation_owner: User owns the annotation (or it is new)
        is_entity_owner: User owns the annotated entity
        is_compilation_owner: User owns the compilation the annotation
            is attached to
    """

    is_annotation_owner: bool
    is_entity_owner: bool
    is_compilation_owner: bool = False


def _values(container: Any) -> List[Any]:
    if isinstance(container, dict):
        return list(container.values())
    if isinstance(container, list):
        return list(container)
    return []


def _children(collection: Collection, doc: Document) -> List[List[Tuple[Collection, Any]]]:
    """Nested children of doc, grouped into phases saved in order."""
    if collection == Collection.COMPILATION:
        return [
            [(Collection.ANNOTATION, v) for v in _values(doc.get("annotations"))],
            [(Collection.ENTITY, v) for v in _values(doc.get("entities"))],
        ]
    if collection == Collection.ENTITY:
        return [
            [(Collection.ANNOTATION, v) for v in _values(doc.get("annotations"))],
            [(Collection.DIGITAL_ENTITY, doc.get("relatedDigitalEntity"))],
        ]
    if collection == Collection.DIGITAL_ENTITY:
        return [
            [(Collection.INSTITUTION, v) for v in _values(doc.get("institutions"))]
            + [(Collection.PERSON, v) for v in _values(doc.get("persons"))]
            + [(Collection.PHYSICAL_ENTITY, v) for v in _values(doc.get("phyObjs"))]
            + [(Collection.TAG, v) for v in _values(doc.get("tags"))],
        ]
    if collection == Collection.PHYSICAL_ENTITY:
        return [
            [(Collection.INSTITUTION, v) for v in _values(doc.get("institutions"))]
            + [(Collection.PERSON, v) for v in _values(doc.get("persons"))],
        ]
    if collection == Collection.PERSON:
        institutions = [
            institution
            for owned in _values(doc.get("institutions"))
            for institution in _values(owned)
        ]
        return [
            [(Collection.INSTITUTION, v) for v in institutions],
            [(Collection.CONTACT, v) for v in _values(doc.get("contact_references"))],
        ]
    if collection == Collection.INSTITUTION:
        return [[(Collection.ADDRESS, v) for v in _values(doc.get("addresses"))]]
    return []


class Saver:
    """Persists document graphs children-first.

    Example:
        >>> saver = Saver(store, caches.entities, hooks, resolver, ownership, previews)
        >>> await saver.save(Collection.INSTITUTION, {
        ...     "_id": "", "name": "Museum", "addresses": {"E1": {"street": "Main", "city": "Cologne"}},
        ... }, user)
        True
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Cache,
        hooks: HookRegistry,
        resolver: Resolver,
        ownership: OwnershipManager,
        previews: PreviewStore,
    ) -> None:
        self._store = store
        self._cache = cache
        self._hooks = hooks
        self._resolver = resolver
        self._ownership = ownership
        self._transformer = DocumentTransformer(store, self._licence_of, previews)

    async def _licence_of(self, digital_entity_id: str) -> Optional[str]:
        digital_entity = await self._resolver.resolve(
            digital_entity_id, Collection.DIGITAL_ENTITY, depth=0
        )
        return digital_entity.get("licence") if digital_entity else None

    async def save(
        self,
        collection: Collection,
        incoming: Any,
        acting_user: ActingUser,
        permissions: Optional[AnnotationPermissions] = None,
    ) -> bool:
        """Save a document and, first, every nested child.

        Args:
            collection: Collection of incoming
            incoming: Full document (or a reference, which is a no-op)
            acting_user: User on whose behalf the save runs
            permissions: Permission facts for annotation saves; None means
                the caller does not restrict the save

        Returns:
            True if the store acknowledged the write (or nothing had to be
            written), False otherwise

        Raises:
            ValidationError: If the document fails validation
            PermissionDeniedError: If permissions forbid the save
        """
        kind = classify(incoming, collection)
        if kind is None:
            if isinstance(incoming, dict):
                errors = get_definition(collection).validate(incoming)
                raise ValidationError(
                    f"Invalid new {collection.value}: {'; '.join(errors)}",
                    collection=collection.value,
                    errors=errors,
                )
            logger.debug(f"Nothing to save for {collection.value}")
            return False
        if isinstance(kind, Reference):
            return True

        doc = kind.document
        if not is_valid_id(doc.get("_id")):
            doc["_id"] = new_object_id()
        ident = str(doc["_id"])

        definition = get_definition(collection)
        errors = definition.validate(doc)
        if errors:
            raise ValidationError(
                f"Invalid {collection.value} {ident}: {'; '.join(errors)}",
                collection=collection.value,
                errors=errors,
            )
        if collection == Collection.ANNOTATION and permissions is not None:
            try:
                await self._check_annotation(doc, ident, permissions, acting_user)
            except StoreError as e:
                logger.error(f"Checking permissions on annotation {ident} failed: {e}")
                return False

        await self._cache.delete(cache_key(collection, ident))

        for phase in _children(collection, doc):
            await self._save_children(collection, ident, phase, acting_user)

        try:
            transformed = await self._transformer.transform(
                collection, copy.deepcopy(doc), acting_user
            )
        except StoreError as e:
            logger.error(f"Preparing {collection.value} {ident} failed: {e}", exc_info=True)
            return False
        transformed = await self._hooks.run_hooks(
            collection, HookPhase.ON_TRANSFORM, transformed, acting_user
        )
        payload = {key: value for key, value in transformed.items() if key != "_id"}

        success = False
        try:
            result = await self._store.update_one(
                collection.value, {"_id": ident}, {"$set": payload}, upsert=True
            )
            success = result.acknowledged
        except StoreError as e:
            logger.error(f"Saving {collection.value} {ident} failed: {e}", exc_info=True)

        await self._hooks.run_hooks(
            collection, HookPhase.AFTER_SAVE, {**transformed, "_id": ident}, acting_user
        )

        if success and definition.tracks_ownership:
            try:
                await self._ownership.make_owner_of(acting_user, collection, [ident])
            except StoreError as e:
                logger.warning(f"Could not record ownership of {collection.value} {ident}: {e}")

        logger.debug(
            f"Saved {collection.value} {ident}",
            extra={"collection": collection.value, "id": ident, "success": success},
        )
        return success

    async def _save_children(
        self,
        parent: Collection,
        parent_id: str,
        children: List[Tuple[Collection, Any]],
        acting_user: ActingUser,
    ) -> None:
        children = [(coll, child) for coll, child in children if child is not None]
        if not children:
            return
        results = await asyncio.gather(
            *(self.save(coll, child, acting_user) for coll, child in children),
            return_exceptions=True,
        )
        for (coll, _), result in zip(children, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Saving nested {coll.value} of {parent.value} {parent_id} failed: {result}"
                )
            elif result is False:
                logger.warning(f"Nested {coll.value} of {parent.value} {parent_id} was not saved")

    async def _check_annotation(
        self,
        doc: Document,
        ident: str,
        permissions: AnnotationPermissions,
        acting_user: ActingUser,
    ) -> None:
        source = doc["target"]["source"]
        in_compilation = is_valid_id(source.get("relatedCompilation"))

        if not in_compilation and not permissions.is_entity_owner:
            raise PermissionDeniedError(
                "Only the entity owner may annotate outside a compilation",
                user_id=acting_user.id,
                document_id=ident,
            )

        if permissions.is_annotation_owner:
            return

        # Compilation owners may re-rank foreign annotations, nothing more
        if not (in_compilation and permissions.is_compilation_owner):
            raise PermissionDeniedError(
                "Not the owner of this annotation",
                user_id=acting_user.id,
                document_id=ident,
            )
        existing = await self._store.find_one(Collection.ANNOTATION.value, {"_id": ident})
        if existing is None or existing.get("body") != doc.get("body"):
            raise PermissionDeniedError(
                "Compilation owners may not change the body of a foreign annotation",
                user_id=acting_user.id,
                document_id=ident,
            )
