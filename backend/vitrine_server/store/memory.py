"""
In-memory document store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests
- Local development without a MongoDB instance

It implements the filter and update subset documented in store/base.py
with MongoDB semantics (dotted paths, array membership on equality,
upsert seeded from equality filters).

Invariants:
    - All data is lost on process exit
    - Every operation yields to the event loop once, so concurrent
      callers interleave the way they would against a real server
    - Returned documents are deep copies

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with DocumentStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from bson import ObjectId

from .base import DeleteResult, Document, Filter, StoreConnectionError, StoreError, UpdateResult

logger = logging.getLogger(__name__)

_MISSING = object()


def _normalize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def get_path(doc: Any, path: str) -> Any:
    """Read a dotted path from a document, _MISSING if absent."""
    current = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _unset_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current: Any = doc
    for part in parts[:-1]:
        if not isinstance(current, dict) or part not in current:
            return
        current = current[part]
    if isinstance(current, dict):
        current.pop(parts[-1], None)


def _equals(actual: Any, expected: Any) -> bool:
    expected = _normalize(expected)
    if actual is _MISSING:
        return expected is None
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def _match_condition(actual: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$exists":
                if (actual is not _MISSING) != bool(operand):
                    return False
            elif op == "$in":
                if not any(_equals(actual, candidate) for candidate in operand):
                    return False
            elif op == "$ne":
                if _equals(actual, operand):
                    return False
            elif op == "$eq":
                if not _equals(actual, operand):
                    return False
            else:
                raise StoreError(f"Unsupported filter operator: {op}")
        return True
    return _equals(actual, condition)


def matches(doc: Document, filter: Filter) -> bool:
    """Whether doc satisfies filter."""
    for key, condition in filter.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(get_path(doc, key), condition):
            return False
    return True


def apply_update(doc: Document, update: Dict[str, Any]) -> None:
    """Apply a $set / $unset update document in place."""
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(_normalize(value)))
        elif op == "$unset":
            for path in fields:
                _unset_path(doc, path)
        else:
            raise StoreError(f"Unsupported update operator: {op}")


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Attributes:
        operations: Ordered log of (operation, collection, document id)
            for every write, used to assert write ordering

    Thread safety:
        Uses an asyncio lock around each operation. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.insert_one("tag", {"_id": "t1", "value": "bronze"})
        't1'
    """

    def __init__(self, latency: float = 0.0) -> None:
        """Initialize in-memory store.

        Args:
            latency: Seconds each operation sleeps before running
        """
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._connected = False
        self._lock = asyncio.Lock()
        self._latency = latency
        self._fail_operations: Set[Tuple[str, Optional[str]]] = set()
        self.operations: List[Tuple[str, str, Optional[str]]] = []

    async def connect(self) -> None:
        self._connected = True
        logger.info("In-memory document store connected")

    async def close(self) -> None:
        self._connected = False
        logger.info("In-memory document store closed")

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def _enter(self, operation: str, collection: str) -> None:
        await asyncio.sleep(self._latency)
        if not self._connected:
            raise StoreConnectionError("Store not connected", collection=collection)
        if (operation, collection) in self._fail_operations or (operation, None) in self._fail_operations:
            raise StoreError(f"Injected failure for {operation}", collection=collection)

    def _select(self, collection: str, filter: Filter) -> List[Document]:
        ident = filter.get("_id")
        docs = self._collections[collection]
        if isinstance(ident, (str, ObjectId)):
            doc = docs.get(str(ident))
            candidates = [doc] if doc is not None else []
        else:
            candidates = list(docs.values())
        return [doc for doc in candidates if matches(doc, filter)]

    async def find_one(self, collection: str, filter: Filter) -> Optional[Document]:
        await self._enter("find_one", collection)
        async with self._lock:
            found = self._select(collection, filter)
            return copy.deepcopy(found[0]) if found else None

    async def find(self, collection: str, filter: Filter) -> List[Document]:
        await self._enter("find", collection)
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._select(collection, filter)]

    async def insert_one(self, collection: str, document: Document) -> str:
        await self._enter("insert_one", collection)
        async with self._lock:
            doc = copy.deepcopy(_normalize_doc(document))
            ident = doc.get("_id") or str(ObjectId())
            doc["_id"] = ident
            if ident in self._collections[collection]:
                raise StoreError(f"Duplicate key {ident}", collection=collection)
            self._collections[collection][ident] = doc
            self.operations.append(("insert_one", collection, ident))
            return ident

    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Dict[str, Any],
        upsert: bool = False,
    ) -> UpdateResult:
        await self._enter("update_one", collection)
        async with self._lock:
            found = self._select(collection, filter)
            if found:
                doc = found[0]
                before = copy.deepcopy(doc)
                apply_update(doc, update)
                self.operations.append(("update_one", collection, doc["_id"]))
                return UpdateResult(matched_count=1, modified_count=int(before != doc))
            if not upsert:
                return UpdateResult()

            doc = {
                key: _normalize(value)
                for key, value in filter.items()
                if not key.startswith("$") and "." not in key and not isinstance(value, dict)
            }
            doc["_id"] = str(doc.get("_id") or ObjectId())
            apply_update(doc, update)
            self._collections[collection][doc["_id"]] = doc
            self.operations.append(("update_one", collection, doc["_id"]))
            return UpdateResult(upserted_id=doc["_id"])

    async def update_many(self, collection: str, filter: Filter, update: Dict[str, Any]) -> UpdateResult:
        await self._enter("update_many", collection)
        async with self._lock:
            found = self._select(collection, filter)
            modified = 0
            for doc in found:
                before = copy.deepcopy(doc)
                apply_update(doc, update)
                modified += int(before != doc)
                self.operations.append(("update_many", collection, doc["_id"]))
            return UpdateResult(matched_count=len(found), modified_count=modified)

    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        await self._enter("delete_one", collection)
        async with self._lock:
            found = self._select(collection, filter)
            if not found:
                return DeleteResult()
            del self._collections[collection][found[0]["_id"]]
            self.operations.append(("delete_one", collection, found[0]["_id"]))
            return DeleteResult(deleted_count=1)

    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        await self._enter("delete_many", collection)
        async with self._lock:
            found = self._select(collection, filter)
            for doc in found:
                del self._collections[collection][doc["_id"]]
                self.operations.append(("delete_many", collection, doc["_id"]))
            return DeleteResult(deleted_count=len(found))

    # Testing helpers

    def fail(self, operation: str, collection: Optional[str] = None) -> None:
        """Make every call of operation (optionally on one collection) raise StoreError."""
        self._fail_operations.add((operation, collection))

    def recover(self) -> None:
        """Stop injecting failures."""
        self._fail_operations.clear()

    def get_all(self, collection: str) -> List[Document]:
        """Get every stored document of a collection (for testing)."""
        return [copy.deepcopy(doc) for doc in self._collections[collection].values()]

    def writes_to(self, collection: str) -> List[Optional[str]]:
        """Identifiers written to collection, in order (for testing)."""
        return [ident for op, coll, ident in self.operations if coll == collection]

    def clear(self) -> None:
        """Clear all data (for testing)."""
        self._collections.clear()
        self.operations.clear()


def _normalize_doc(document: Document) -> Document:
    doc = dict(document)
    if "_id" in doc and doc["_id"] is not None:
        doc["_id"] = str(doc["_id"])
    return doc
