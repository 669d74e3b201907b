"""
Document model for Vitrine Server.

This module provides:
- Collection tags and the Reference / Hydrated document shapes
- Per-collection type definitions with validation
- Identifier helpers

Invariants:
    - classify() is the only place that inspects field presence
    - Identifiers are strings inside the engine
"""

from .documents import DOCUMENT_TYPES, DocumentTypeDef, classify, get_definition
from .types import (
    Collection,
    DocumentRef,
    Hydrated,
    Reference,
    cache_key,
    id_timestamp,
    is_object_id,
    is_valid_id,
    new_object_id,
    to_id,
)

__all__ = [
    # Types
    "Collection",
    "Reference",
    "Hydrated",
    "DocumentRef",
    # Definitions
    "DocumentTypeDef",
    "DOCUMENT_TYPES",
    "get_definition",
    "classify",
    # Identifiers
    "new_object_id",
    "is_object_id",
    "is_valid_id",
    "to_id",
    "id_timestamp",
    "cache_key",
]
