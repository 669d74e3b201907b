"""
Document type definitions and classification.

Every collection has a DocumentTypeDef describing:
- guard_fields: fields whose presence marks a value as a full document
- relation_maps: owner-keyed maps subject to relation scoping and merging
- shape constraints checked by validate() before a save

classify() is the single place where field presence is inspected to tell
a Reference from a Hydrated document.

Invariants:
    - A value with every guard field is Hydrated, whatever else it lacks
    - A mapping with an _id but missing a guard field is a Reference
    - Address, Contact and Tag are not tracked in possession lists

How to change safely:
    - Adding a guard field turns previously hydrated values into references;
      check every caller that builds documents by hand
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId

from .types import Collection, Hydrated, Reference, is_valid_id, to_id

Check = Callable[[Dict[str, Any]], List[str]]


def _nested(doc: Dict[str, Any], *path: str) -> Any:
    current: Any = doc
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _check_annotation(doc: Dict[str, Any]) -> List[str]:
    errors = []
    if not isinstance(_nested(doc, "target", "source"), dict):
        errors.append("target.source is required")
    elif not is_valid_id(_nested(doc, "target", "source", "relatedEntity")):
        errors.append("target.source.relatedEntity must be a valid identifier")
    if _nested(doc, "body", "content", "relatedPerspective") is None:
        errors.append("body.content.relatedPerspective is required")
    return errors


@dataclass(frozen=True)
class DocumentTypeDef:
    """Definition of a document collection.

    Attributes:
        collection: Collection this definition describes
        guard_fields: Fields that must all be present on a full document
        relation_maps: Owner-keyed relation maps (owner id -> related value)
        string_fields: Fields that must be strings when present
        map_fields: Fields that must be mappings when present
        list_fields: Fields that must be lists when present
        tracks_ownership: Whether saves record the document in the acting
            user's possession list
        checks: Additional validators returning error messages
    """

    collection: Collection
    guard_fields: Tuple[str, ...]
    relation_maps: Tuple[str, ...] = ()
    string_fields: Tuple[str, ...] = ()
    map_fields: Tuple[str, ...] = ()
    list_fields: Tuple[str, ...] = ()
    tracks_ownership: bool = True
    checks: Tuple[Check, ...] = ()

    def is_typed(self, value: Any) -> bool:
        """Whether value carries every guard field of this collection."""
        return isinstance(value, dict) and all(name in value for name in self.guard_fields)

    def validate(self, doc: Dict[str, Any]) -> List[str]:
        """Check required fields and field shapes.

        Args:
            doc: Document to validate

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        ident = doc.get("_id")
        if ident not in (None, "") and not is_valid_id(ident):
            errors.append("_id must be a non-empty string or ObjectId")

        for name in self.guard_fields:
            if name not in doc:
                errors.append(f"Missing required field '{name}'")

        for name in self.string_fields:
            if name in doc and not isinstance(doc[name], str):
                errors.append(f"Field '{name}' must be a string")
        for name in self.map_fields + self.relation_maps:
            if name in doc and not isinstance(doc[name], dict):
                errors.append(f"Field '{name}' must be a mapping")
        for name in self.list_fields:
            if name in doc and not isinstance(doc[name], list):
                errors.append(f"Field '{name}' must be a list")

        for check in self.checks:
            errors.extend(check(doc))
        return errors


DOCUMENT_TYPES: Dict[Collection, DocumentTypeDef] = {
    Collection.ENTITY: DocumentTypeDef(
        collection=Collection.ENTITY,
        guard_fields=("name", "mediaType", "online", "finished"),
        string_fields=("name", "mediaType"),
        map_fields=("annotations",),
        list_fields=("files",),
    ),
    Collection.COMPILATION: DocumentTypeDef(
        collection=Collection.COMPILATION,
        guard_fields=("name", "description", "entities"),
        string_fields=("name", "description"),
        map_fields=("entities", "annotations"),
    ),
    Collection.ANNOTATION: DocumentTypeDef(
        collection=Collection.ANNOTATION,
        guard_fields=("body", "target"),
        map_fields=("body", "target"),
        checks=(_check_annotation,),
    ),
    Collection.PERSON: DocumentTypeDef(
        collection=Collection.PERSON,
        guard_fields=("prename", "name"),
        relation_maps=("roles", "institutions", "contact_references"),
        string_fields=("prename", "name"),
    ),
    Collection.INSTITUTION: DocumentTypeDef(
        collection=Collection.INSTITUTION,
        guard_fields=("name", "addresses"),
        relation_maps=("roles", "addresses", "notes"),
        string_fields=("name",),
    ),
    Collection.DIGITAL_ENTITY: DocumentTypeDef(
        collection=Collection.DIGITAL_ENTITY,
        guard_fields=("type", "licence"),
        list_fields=("persons", "institutions", "tags", "phyObjs"),
    ),
    Collection.PHYSICAL_ENTITY: DocumentTypeDef(
        collection=Collection.PHYSICAL_ENTITY,
        guard_fields=("title", "place"),
        list_fields=("persons", "institutions"),
    ),
    Collection.CONTACT: DocumentTypeDef(
        collection=Collection.CONTACT,
        guard_fields=("mail",),
        tracks_ownership=False,
    ),
    Collection.ADDRESS: DocumentTypeDef(
        collection=Collection.ADDRESS,
        guard_fields=("street", "city"),
        tracks_ownership=False,
    ),
    Collection.TAG: DocumentTypeDef(
        collection=Collection.TAG,
        guard_fields=("value",),
        string_fields=("value",),
        tracks_ownership=False,
    ),
    Collection.GROUP: DocumentTypeDef(
        collection=Collection.GROUP,
        guard_fields=("name", "members", "owners"),
        list_fields=("members", "owners"),
    ),
}


def get_definition(collection: Collection) -> DocumentTypeDef:
    return DOCUMENT_TYPES[collection]


def classify(value: Any, collection: Collection) -> Optional[Reference | Hydrated]:
    """Tell a reference from a hydrated document.

    Args:
        value: Bare identifier, Reference, Hydrated or document mapping
        collection: Collection the value is expected to belong to

    Returns:
        Hydrated if value carries every guard field of collection,
        Reference if it only identifies a document, None otherwise
    """
    if value is None:
        return None
    if isinstance(value, (Reference, Hydrated)):
        return value
    if isinstance(value, (str, ObjectId)):
        ident = to_id(value)
        return Reference(ident) if ident else None
    if isinstance(value, dict):
        if DOCUMENT_TYPES[collection].is_typed(value):
            return Hydrated(collection, value)
        ident = to_id(value)
        return Reference(ident) if ident else None
    return None
