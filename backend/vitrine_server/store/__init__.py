"""
Document store abstraction for Vitrine Server.

This module provides a pluggable store interface supporting:
- MongoDB (production)
- In-memory (for testing)

Invariants:
    - The store is the source of truth for every document
    - Reads return independent copies with string identifiers
    - Writes are single-document; there are no multi-document transactions
"""

from .base import (
    USERS_COLLECTION,
    DeleteResult,
    DocumentStore,
    StoreConnectionError,
    StoreError,
    UpdateResult,
    create_document_store,
)
from .memory import InMemoryDocumentStore
from .mongo import MongoDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "UpdateResult",
    "DeleteResult",
    "StoreError",
    "StoreConnectionError",
    "USERS_COLLECTION",
    # Factory
    "create_document_store",
    # Implementations
    "InMemoryDocumentStore",
    "MongoDocumentStore",
]
