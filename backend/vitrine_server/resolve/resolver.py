"""
Depth-bounded resolution of stored reference graphs.

The Resolver turns a reference (bare identifier or partial document) into
a hydrated document, recursively replacing nested references with the
documents they point to.

Resolution of one document:
    1. A value that already carries every guard field is used as-is
    2. Otherwise the entities cache is consulted ("<collection>::<id>")
    3. Otherwise the document store is queried; a miss yields None
    4. The value is written back to the cache (best effort)
    5. onResolve hooks run, then _id is forced back to the canonical id
    6. When resolving on behalf of an owner (scope), persons and
       institutions are stripped to that owner's relation slice
    7. With depth budget left, the collection's nested step runs with
       depth - 1

Invariants:
    - depth <= 0 returns the document with nested references untouched
    - Relation filtering happens whenever a scope is given, at any depth
    - An error inside a nested step makes the whole call return None;
      an element that fails or does not resolve is only dropped
    - Sibling resolutions run concurrently and fail independently
    - Cached values are snapshots taken before nested resolution

How to change safely:
    - New nested fields must go through _resolve_list / _resolve_map so
      element failures stay isolated
    - Keep the nested step table exhaustive over Collection
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..cache import Cache
from ..errors import StoreError
from ..hooks import HookPhase, HookRegistry
from ..model import Collection, Hydrated, cache_key, classify, to_id
from ..ownership import ActingUser
from ..parents import compilation_annotations_filter, entity_annotations_filter
from ..store import DocumentStore
from .relations import SCOPED_COLLECTIONS, filter_relations

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
NestedStep = Callable[[Document, int, Optional[str]], Awaitable[Document]]

DEFAULT_MAX_DEPTH = 10


def _as_map(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


class Resolver:
    """Hydrates documents from the store, cache-aided and depth-bounded.

    Attributes:
        max_depth: Default recursion budget

    Example:
        >>> resolver = Resolver(store, caches.entities, hooks)
        >>> entity = await resolver.resolve("65a0c0ffee0000000000beef", Collection.ENTITY)
        >>> entity["relatedDigitalEntity"]["persons"][0]["prename"]
        'Ada'
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Cache,
        hooks: HookRegistry,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._store = store
        self._cache = cache
        self._hooks = hooks
        self.max_depth = max_depth
        self._nested: Dict[Collection, Optional[NestedStep]] = {
            Collection.ENTITY: self._resolve_entity_refs,
            Collection.COMPILATION: self._resolve_compilation_refs,
            Collection.DIGITAL_ENTITY: self._resolve_digital_entity_refs,
            Collection.PHYSICAL_ENTITY: self._resolve_physical_entity_refs,
            Collection.PERSON: self._resolve_person_refs,
            Collection.INSTITUTION: self._resolve_institution_refs,
            Collection.ANNOTATION: None,
            Collection.CONTACT: None,
            Collection.ADDRESS: None,
            Collection.TAG: None,
            Collection.GROUP: None,
        }

    async def resolve(
        self,
        ref: Any,
        collection: Collection,
        depth: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> Optional[Document]:
        """Resolve a reference into a hydrated document.

        Args:
            ref: Bare identifier, partial document or full document
            collection: Collection the reference points into
            depth: Recursion budget (defaults to max_depth)
            scope: Owner identifier to filter person/institution
                relation maps for

        Returns:
            The hydrated document, or None if it does not exist, the
            store failed, or a nested step failed
        """
        if depth is None:
            depth = self.max_depth

        kind = classify(ref, collection)
        if kind is None:
            return None

        if isinstance(kind, Hydrated):
            doc = copy.deepcopy(kind.document)
            ident = kind.id or None
            if ident:
                await self._cache.set(cache_key(collection, ident), doc)
        else:
            ident = kind.id
            doc = await self._fetch(collection, ident)
            if doc is None:
                return None

        doc = await self._hooks.run_hooks(collection, HookPhase.ON_RESOLVE, doc)
        if ident:
            doc["_id"] = ident

        if scope and collection in SCOPED_COLLECTIONS:
            doc = filter_relations(doc, collection, scope)

        step = self._nested[collection]
        if depth <= 0 or step is None:
            return doc

        try:
            return await step(doc, depth - 1, scope)
        except Exception as e:
            logger.warning(
                f"Nested resolution of {collection.value} {ident} failed: {e}",
                exc_info=True,
            )
            return None

    async def resolve_any(self, collection: Collection | str, ref: Any, depth: Optional[int] = None) -> Optional[Document]:
        """Resolve by collection tag.

        Raises:
            ValueError: If collection is not a known tag
        """
        return await self.resolve(ref, Collection.parse(collection), depth)

    async def resolve_possessions(
        self,
        user: ActingUser,
        collections: Optional[Iterable[Collection]] = None,
        depth: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Hydrate a user's possession lists.

        Args:
            user: User whose possession lists to resolve
            collections: Restrict to these collections (default: every
                known collection present in user.data)
            depth: Recursion budget per document

        Returns:
            Copy of user.data with identifier lists replaced by documents;
            duplicates and unresolvable identifiers are dropped
        """
        data = copy.deepcopy(user.data)
        if collections is None:
            known = {c.value for c in Collection}
            collections = [Collection(key) for key in data if key in known]

        targets = list(collections)
        lists = await asyncio.gather(
            *(
                self._resolve_list(list(dict.fromkeys(data.get(c.value, []))), c, depth)
                for c in targets
            )
        )
        for coll, docs in zip(targets, lists):
            data[coll.value] = docs
        return data

    async def _fetch(self, collection: Collection, ident: str) -> Optional[Document]:
        key = cache_key(collection, ident)
        cached = await self._cache.get(key)
        if isinstance(cached, dict):
            logger.debug(f"Cache hit for {key}")
            return cached

        try:
            doc = await self._store.find_one(collection.value, {"_id": ident})
        except StoreError as e:
            logger.warning(f"Store lookup of {key} failed: {e}")
            return None
        if doc is None:
            logger.debug(f"{key} not found")
            return None

        await self._cache.set(key, doc)
        return doc

    async def _resolve_list(
        self,
        values: Any,
        collection: Collection,
        depth: Optional[int],
        scope: Optional[str] = None,
    ) -> List[Document]:
        if not isinstance(values, list):
            return []
        results = await asyncio.gather(
            *(self.resolve(value, collection, depth, scope) for value in values),
            return_exceptions=True,
        )
        resolved = []
        for value, result in zip(values, results):
            if isinstance(result, BaseException):
                logger.warning(f"Dropping {collection.value} {to_id(value)}: {result}")
            elif result is None:
                logger.debug(f"Dropping unresolved {collection.value} {to_id(value)}")
            else:
                resolved.append(result)
        return resolved

    async def _resolve_map(
        self,
        mapping: Any,
        collection: Collection,
        depth: Optional[int],
        scope: Optional[str] = None,
    ) -> Dict[str, Document]:
        if not isinstance(mapping, dict):
            return {}
        keys = list(mapping)
        targets = [
            mapping[key] if classify(mapping[key], collection) is not None else key for key in keys
        ]
        results = await asyncio.gather(
            *(self.resolve(target, collection, depth, scope) for target in targets),
            return_exceptions=True,
        )
        resolved = {}
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning(f"Dropping {collection.value} {key}: {result}")
            elif result is None:
                logger.debug(f"Dropping unresolved {collection.value} {key}")
            else:
                resolved[key] = result
        return resolved

    # Nested steps. Each receives the remaining depth for its children.

    async def _resolve_entity_refs(self, entity: Document, depth: int, scope: Optional[str]) -> Document:
        annotations = _as_map(entity.get("annotations"))
        for found in await self._store.find(
            Collection.ANNOTATION.value, entity_annotations_filter(entity["_id"])
        ):
            annotations[found["_id"]] = found

        related = entity.get("relatedDigitalEntity")
        resolved_annotations, resolved_related = await asyncio.gather(
            self._resolve_map(annotations, Collection.ANNOTATION, depth),
            self.resolve(related, Collection.DIGITAL_ENTITY, depth),
        )
        entity["annotations"] = resolved_annotations
        if resolved_related is not None:
            entity["relatedDigitalEntity"] = resolved_related
        return entity

    async def _resolve_compilation_refs(self, compilation: Document, depth: int, scope: Optional[str]) -> Document:
        annotations = _as_map(compilation.get("annotations"))
        for found in await self._store.find(
            Collection.ANNOTATION.value, compilation_annotations_filter(compilation["_id"])
        ):
            annotations[found["_id"]] = found

        resolved_annotations, resolved_entities = await asyncio.gather(
            self._resolve_map(annotations, Collection.ANNOTATION, depth),
            self._resolve_map(compilation.get("entities"), Collection.ENTITY, depth),
        )
        compilation["annotations"] = resolved_annotations
        compilation["entities"] = resolved_entities
        return compilation

    async def _resolve_metadata_refs(self, doc: Document, depth: int) -> Document:
        own_id = doc["_id"]
        persons, institutions = await asyncio.gather(
            self._resolve_list(doc.get("persons"), Collection.PERSON, depth, scope=own_id),
            self._resolve_list(doc.get("institutions"), Collection.INSTITUTION, depth, scope=own_id),
        )
        if "persons" in doc:
            doc["persons"] = [self._scoped_person(person, own_id) for person in persons]
        if "institutions" in doc:
            doc["institutions"] = [
                filter_relations(institution, Collection.INSTITUTION, own_id)
                for institution in institutions
            ]
        return doc

    @staticmethod
    def _scoped_person(person: Document, owner_id: str) -> Document:
        person = filter_relations(person, Collection.PERSON, owner_id)
        roles = person.get("roles")
        if not isinstance(roles, dict):
            roles = {}
        roles.setdefault(owner_id, [])
        person["roles"] = roles
        return person

    async def _resolve_digital_entity_refs(self, doc: Document, depth: int, scope: Optional[str]) -> Document:
        doc = await self._resolve_metadata_refs(doc, depth)
        tags, phy_objs = await asyncio.gather(
            self._resolve_list(doc.get("tags"), Collection.TAG, depth),
            self._resolve_list(doc.get("phyObjs"), Collection.PHYSICAL_ENTITY, depth),
        )
        if "tags" in doc:
            doc["tags"] = tags
        if "phyObjs" in doc:
            doc["phyObjs"] = phy_objs
        return doc

    async def _resolve_physical_entity_refs(self, doc: Document, depth: int, scope: Optional[str]) -> Document:
        return await self._resolve_metadata_refs(doc, depth)

    async def _resolve_person_refs(self, person: Document, depth: int, scope: Optional[str]) -> Document:
        contacts = person.get("contact_references")
        institutions = person.get("institutions")

        keys = list(institutions) if isinstance(institutions, dict) else []
        resolved_contacts, *institution_lists = await asyncio.gather(
            self._resolve_map(contacts, Collection.CONTACT, depth),
            *(self._resolve_list(institutions[key], Collection.INSTITUTION, depth, scope) for key in keys),
        )
        if isinstance(contacts, dict):
            person["contact_references"] = resolved_contacts
        if isinstance(institutions, dict):
            person["institutions"] = dict(zip(keys, institution_lists))
        return person

    async def _resolve_institution_refs(self, institution: Document, depth: int, scope: Optional[str]) -> Document:
        addresses = institution.get("addresses")
        if isinstance(addresses, dict):
            institution["addresses"] = await self._resolve_map(addresses, Collection.ADDRESS, depth)
        return institution
