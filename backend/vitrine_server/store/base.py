"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that all backends must
implement, along with the result types returned by writes.

Filter language (the subset the engine relies on):
    - {"a.b": value}           equality on a dotted path
    - {"a.b": {"$exists": b}}  presence test
    - {"a": {"$in": [..]}}     membership
    - {"a": {"$ne": value}}    inequality
    - {"$or": [f1, f2]}        disjunction

Update language: {"$set": {path: value}}, {"$unset": {path: ""}}.

Invariants:
    - Documents returned by a store are independent copies
    - _id is always returned as a string
    - A missing document is None, never an exception

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the filter subset small; the in-memory backend must match Mongo
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from ..errors import StoreConnectionError, StoreError

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

# Collection holding user accounts and their possession lists
USERS_COLLECTION = "users"

Document = Dict[str, Any]
Filter = Dict[str, Any]


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of an update_one call.

    Attributes:
        matched_count: Documents matched by the filter
        modified_count: Documents whose content changed
        upserted_id: Identifier of an inserted document, if any
    """

    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Optional[str] = None

    @property
    def upserted_count(self) -> int:
        return 1 if self.upserted_id is not None else 0

    @property
    def acknowledged(self) -> bool:
        """Whether the write touched a document at all."""
        return self.modified_count + self.upserted_count > 0 or self.matched_count > 0


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a delete call."""

    deleted_count: int = 0


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    All implementations must provide:
    - Lookups by filter
    - Single-document upserting updates
    - Single and bulk deletes

    Collections are addressed by name (Collection.value or
    USERS_COLLECTION).

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.update_one("tag", {"_id": "t1"}, {"$set": {"value": "x"}}, upsert=True)
        >>> await store.find_one("tag", {"_id": "t1"})
        {'_id': 't1', 'value': 'x'}
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the backend.

        Raises:
            StoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close connection to the backend."""
        ...

    @abstractmethod
    async def find_one(self, collection: str, filter: Filter) -> Optional[Document]:
        """Return the first document matching filter, or None."""
        ...

    @abstractmethod
    async def find(self, collection: str, filter: Filter) -> List[Document]:
        """Return every document matching filter."""
        ...

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> str:
        """Insert a document and return its identifier."""
        ...

    @abstractmethod
    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Dict[str, Any],
        upsert: bool = False,
    ) -> UpdateResult:
        """Apply update to the first document matching filter.

        Args:
            collection: Collection name
            filter: Filter selecting the document
            update: $set / $unset update document
            upsert: Insert a new document when nothing matches

        Returns:
            UpdateResult with match, modify and upsert information

        Raises:
            StoreError: If the write fails
        """
        ...

    @abstractmethod
    async def update_many(self, collection: str, filter: Filter, update: Dict[str, Any]) -> UpdateResult:
        """Apply update to every document matching filter."""
        ...

    @abstractmethod
    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        """Delete the first document matching filter."""
        ...

    @abstractmethod
    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        """Delete every document matching filter."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if connected to backend."""
        ...


def create_document_store(config: "ServerConfig") -> DocumentStore:
    """Factory function to create the configured document store.

    Args:
        config: Server configuration

    Returns:
        DocumentStore implementation for the configured backend

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend

    if config.store_backend == StoreBackend.MONGO:
        from .mongo import MongoDocumentStore

        return MongoDocumentStore(config.mongo)
    elif config.store_backend == StoreBackend.MEMORY:
        from .memory import InMemoryDocumentStore

        return InMemoryDocumentStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")


__all__ = [
    "USERS_COLLECTION",
    "Document",
    "Filter",
    "UpdateResult",
    "DeleteResult",
    "DocumentStore",
    "StoreError",
    "StoreConnectionError",
    "create_document_store",
]
