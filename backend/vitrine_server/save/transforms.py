"""
Per-collection transforms applied before a document is written.

A transform receives a deep copy of the incoming (hydrated) document after
its children were saved, and returns the normalized document to store:
- nested documents are flattened to {"_id": ...} references
- derived, filterable fields (prefixed "__") are recomputed
- owner-keyed relation maps of persons and institutions are merged with
  the stored document instead of replacing it

Invariants:
    - Transforms are deterministic for the same input and stored state,
      so saving a document twice stores the same content
    - Merging never drops an owner key present in the stored document
    - Transforms never write to the store; only the saver does

How to change safely:
    - Add new derived fields in both the transform and the afterSave hook
      that keeps parents up to date (hooks/builtin.py)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..model import Collection, Hydrated, Reference, classify, new_object_id, to_id
from ..ownership import AccessRole, ActingUser
from ..store import DocumentStore
from .previews import PreviewStore

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

ENTITY_FIELDS = (
    "_id",
    "name",
    "files",
    "externalFile",
    "relatedDigitalEntity",
    "creator",
    "online",
    "finished",
    "whitelist",
    "annotations",
    "mediaType",
    "dataSource",
    "processed",
    "settings",
    "access",
    "options",
)

DIGITAL_ENTITY_LISTS = (
    "persons",
    "institutions",
    "tags",
    "phyObjs",
    "externalId",
    "externalLink",
    "biblioRefs",
    "other",
    "metadata_files",
    "dimensions",
    "creation",
    "files",
)

PHYSICAL_ENTITY_LISTS = (
    "persons",
    "institutions",
    "externalId",
    "externalLink",
    "biblioRefs",
    "other",
    "metadata_files",
)


def flatten_ref(value: Any) -> Optional[Dict[str, str]]:
    """Reduce a document or identifier to {"_id": id}."""
    ident = to_id(value)
    return {"_id": ident} if ident else None


def flatten_list(values: Any) -> List[Dict[str, str]]:
    if not isinstance(values, list):
        return []
    return [ref for ref in (flatten_ref(v) for v in values) if ref is not None]


def flatten_id_map(mapping: Any) -> Dict[str, Dict[str, str]]:
    """Flatten a map keyed by the child's own identifier.

    Values that carry an identifier re-key the entry, so children whose
    identifier was minted during the cascade land under their new key.
    """
    if not isinstance(mapping, dict):
        return {}
    flattened = {}
    for key, value in mapping.items():
        ident = to_id(value) or to_id(key)
        if ident:
            flattened[ident] = {"_id": ident}
    return flattened


def flatten_owner_map(mapping: Any) -> Dict[str, Any]:
    """Flatten a map keyed by owner id whose values are single children."""
    if not isinstance(mapping, dict):
        return {}
    flattened = {}
    for owner, value in mapping.items():
        ref = flatten_ref(value)
        if ref is not None:
            flattened[owner] = ref
    return flattened


def merge_ref_lists(*lists: Iterable[Any]) -> List[Dict[str, str]]:
    """Union of reference lists, ordered by first occurrence."""
    seen: Dict[str, Dict[str, str]] = {}
    for values in lists:
        for ref in flatten_list(list(values)):
            seen.setdefault(ref["_id"], ref)
    return list(seen.values())


def normalized_name(name: Any) -> str:
    return name.strip().lower() if isinstance(name, str) else ""


def derive_compilation_filterables(entities: Iterable[Document]) -> Dict[str, Any]:
    """Filterable fields of a compilation, from its stored entities."""
    licenses: set = set()
    media_types: set = set()
    downloadable = False
    for entity in entities:
        licenses.update(lic for lic in entity.get("__licenses") or [] if lic)
        if entity.get("mediaType"):
            media_types.add(entity["mediaType"])
        options = entity.get("options") or {}
        downloadable = downloadable or bool(options.get("allowDownload"))
    return {
        "__licenses": sorted(licenses),
        "__mediaTypes": sorted(media_types),
        "__downloadable": downloadable,
    }


class DocumentTransformer:
    """Dispatches documents to their collection's transform.

    Example:
        >>> transformer = DocumentTransformer(store, licence_lookup, previews)
        >>> await transformer.transform(Collection.TAG, {"_id": "t1", "value": "bronze"}, user)
        {'_id': 't1', 'value': 'bronze'}
    """

    def __init__(
        self,
        store: DocumentStore,
        licence_lookup: Callable[[str], Awaitable[Optional[str]]],
        previews: PreviewStore,
    ) -> None:
        """Initialize the transformer.

        Args:
            store: Store read for merge-not-overwrite and compilation entities
            licence_lookup: Returns the licence of a digital entity by id
            previews: Writer for inline preview images
        """
        self._store = store
        self._licence_lookup = licence_lookup
        self._previews = previews
        self._transforms = {
            Collection.ENTITY: self._transform_entity,
            Collection.COMPILATION: self._transform_compilation,
            Collection.ANNOTATION: self._transform_annotation,
            Collection.DIGITAL_ENTITY: self._transform_digital_entity,
            Collection.PHYSICAL_ENTITY: self._transform_physical_entity,
            Collection.PERSON: self._transform_person,
            Collection.INSTITUTION: self._transform_institution,
            Collection.GROUP: self._transform_group,
        }

    async def transform(self, collection: Collection, doc: Document, user: ActingUser) -> Document:
        transform = self._transforms.get(collection)
        if transform is None:
            return doc
        return await transform(doc, user)

    async def _stored(self, collection: Collection, ident: str) -> Document:
        return await self._store.find_one(collection.value, {"_id": ident}) or {}

    async def _transform_entity(self, doc: Document, user: ActingUser) -> Document:
        entity = {key: doc[key] for key in ENTITY_FIELDS if key in doc}
        ident = entity["_id"]

        entity.setdefault("files", [])
        entity.setdefault("whitelist", {"enabled": False, "persons": [], "groups": []})
        entity.setdefault("processed", {})
        entity.setdefault("dataSource", {})
        entity.setdefault("options", {})
        entity.setdefault("creator", user.stripped())
        if not isinstance(entity.get("access"), dict) or not entity["access"]:
            entity["access"] = {user.id: AccessRole.OWNER.value}

        entity["annotations"] = flatten_id_map(entity.get("annotations"))
        entity["relatedDigitalEntity"] = flatten_ref(entity.get("relatedDigitalEntity")) or {
            "_id": new_object_id()
        }

        settings = dict(entity.get("settings") or {})
        if "preview" in settings:
            settings["preview"] = await self._previews.persist(settings["preview"], "entity", ident)
        entity["settings"] = settings

        licence = await self._entity_licence(doc.get("relatedDigitalEntity"))
        entity["__normalizedName"] = normalized_name(entity.get("name"))
        entity["__annotationCount"] = len(entity["annotations"])
        entity["__mediaTypes"] = [entity["mediaType"]] if entity.get("mediaType") else []
        entity["__licenses"] = [licence] if licence else []
        entity["__downloadable"] = bool(entity["options"].get("allowDownload"))
        return entity

    async def _entity_licence(self, related: Any) -> Optional[str]:
        kind = classify(related, Collection.DIGITAL_ENTITY)
        if isinstance(kind, Hydrated):
            return kind.document.get("licence") or None
        if isinstance(kind, Reference):
            return await self._licence_lookup(kind.id)
        return None

    async def _transform_compilation(self, doc: Document, user: ActingUser) -> Document:
        compilation = dict(doc)
        ident = compilation["_id"]
        compilation.setdefault("password", "")
        compilation.setdefault("whitelist", {"enabled": False, "persons": [], "groups": []})
        compilation.setdefault("creator", user.stripped())
        if not isinstance(compilation.get("access"), dict) or not compilation["access"]:
            compilation["access"] = {user.id: AccessRole.OWNER.value}

        compilation["entities"] = flatten_id_map(compilation.get("entities"))
        compilation["annotations"] = flatten_id_map(compilation.get("annotations"))

        entity_ids = list(compilation["entities"])
        entities = (
            await self._store.find(Collection.ENTITY.value, {"_id": {"$in": entity_ids}})
            if entity_ids
            else []
        )
        compilation["__normalizedName"] = normalized_name(compilation.get("name"))
        compilation["__annotationCount"] = len(compilation["annotations"])
        compilation.update(derive_compilation_filterables(entities))
        logger.debug(f"Transformed compilation {ident} with {len(entity_ids)} entities")
        return compilation

    async def _transform_annotation(self, doc: Document, user: ActingUser) -> Document:
        annotation = dict(doc)
        annotation["lastModifiedBy"] = {
            "_id": user.id,
            "name": user.fullname or user.username,
            "type": "person",
        }
        return annotation

    async def _transform_digital_entity(self, doc: Document, user: ActingUser) -> Document:
        entity = dict(doc)
        for key in DIGITAL_ENTITY_LISTS:
            if not isinstance(entity.get(key), list):
                entity[key] = []
        for key in ("title", "description", "statement", "objecttype", "discipline"):
            entity.setdefault(key, "")
        for key in ("persons", "institutions", "phyObjs", "tags"):
            entity[key] = flatten_list(entity[key])
        return entity

    async def _transform_physical_entity(self, doc: Document, user: ActingUser) -> Document:
        entity = dict(doc)
        for key in PHYSICAL_ENTITY_LISTS:
            if not isinstance(entity.get(key), list):
                entity[key] = []
        entity.setdefault("collection", "")
        stored = await self._stored(Collection.PHYSICAL_ENTITY, entity["_id"])
        for key in ("persons", "institutions"):
            entity[key] = merge_ref_lists(stored.get(key) or [], entity[key])
        return entity

    async def _transform_person(self, doc: Document, user: ActingUser) -> Document:
        person = dict(doc)
        stored = await self._stored(Collection.PERSON, person["_id"])

        roles = dict(stored.get("roles") or {})
        roles.update(person.get("roles") or {})
        person["roles"] = roles

        contacts = flatten_owner_map(stored.get("contact_references"))
        contacts.update(flatten_owner_map(person.get("contact_references")))
        person["contact_references"] = contacts

        institutions: Dict[str, List[Dict[str, str]]] = {}
        for source in (stored.get("institutions"), person.get("institutions")):
            if not isinstance(source, dict):
                continue
            for owner, values in source.items():
                institutions[owner] = merge_ref_lists(institutions.get(owner, []), values or [])
        person["institutions"] = institutions
        return person

    async def _transform_institution(self, doc: Document, user: ActingUser) -> Document:
        institution = dict(doc)
        stored = await self._stored(Collection.INSTITUTION, institution["_id"])

        addresses = flatten_owner_map(stored.get("addresses"))
        addresses.update(flatten_owner_map(institution.get("addresses")))
        institution["addresses"] = addresses

        for key in ("roles", "notes"):
            merged = dict(stored.get(key) or {})
            merged.update(institution.get(key) or {})
            institution[key] = merged
        return institution

    async def _transform_group(self, doc: Document, user: ActingUser) -> Document:
        group = dict(doc)
        stripped = user.stripped()
        group.setdefault("creator", stripped)
        if not group.get("owners"):
            group["owners"] = [stripped]
        if not group.get("members"):
            group["members"] = [stripped]
        return group
