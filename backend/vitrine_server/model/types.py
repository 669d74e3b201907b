"""
Core value types for repository documents.

This module defines:
- Collection: the closed set of document collections
- Reference / Hydrated: the two shapes a document field can take
- Identifier helpers (mint, validate, creation timestamp)

Invariants:
    - Identifiers are compared as strings everywhere in the engine
    - A Reference never carries document content beyond its identifier
    - Cache keys are "<collection>::<id>"

How to change safely:
    - Adding a Collection member requires a DocumentTypeDef, a resolve
      step and a transform (see model/documents.py)
    - Never change cache_key() without flushing the entities namespace
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from bson import ObjectId


class Collection(Enum):
    """Document collections of the repository."""

    ENTITY = "entity"
    COMPILATION = "compilation"
    ANNOTATION = "annotation"
    PERSON = "person"
    INSTITUTION = "institution"
    DIGITAL_ENTITY = "digitalentity"
    PHYSICAL_ENTITY = "physicalentity"
    CONTACT = "contact"
    ADDRESS = "address"
    TAG = "tag"
    GROUP = "group"

    @classmethod
    def parse(cls, value: Union[str, Collection]) -> Collection:
        """Parse a collection tag.

        Raises:
            ValueError: If the tag names no known collection
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown collection: {value!r}")


@dataclass(frozen=True)
class Reference:
    """Pointer to a stored document, not yet hydrated.

    Attributes:
        id: Identifier of the referenced document
    """

    id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"_id": self.id}


@dataclass
class Hydrated:
    """A full document of a known collection.

    The document mapping is held by reference: writes to it (such as
    minting an identifier) are visible to whoever passed it in.
    """

    collection: Collection
    document: Dict[str, Any]

    @property
    def id(self) -> str:
        return to_id(self.document) or ""


DocumentRef = Union[Reference, Hydrated]


def new_object_id() -> str:
    """Mint a new identifier."""
    return str(ObjectId())


def is_object_id(value: Any) -> bool:
    """Whether value is a 24-hex ObjectId (or its string form)."""
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def is_valid_id(value: Any) -> bool:
    """Whether value can serve as a document identifier."""
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and value.strip() != ""


def to_id(value: Any) -> Optional[str]:
    """Extract an identifier from a bare id, a Reference or a document.

    Returns:
        The identifier as a string, or None when there is none
    """
    if isinstance(value, Reference):
        return value.id
    if isinstance(value, dict):
        value = value.get("_id")
    if is_valid_id(value):
        return str(value)
    return None


def id_timestamp(value: Any) -> Optional[datetime]:
    """Creation time encoded in an ObjectId-shaped identifier."""
    ident = to_id(value)
    if ident is None or not ObjectId.is_valid(ident):
        return None
    return ObjectId(ident).generation_time


def cache_key(collection: Collection, ident: str) -> str:
    return f"{collection.value}::{ident}"
