"""
MongoDB document store implementation.

Uses pymongo's native asyncio client. Document collections live in the
repository database, user accounts in the accounts database.

Invariants:
    - ObjectId-shaped identifiers are stored as ObjectId, others as strings
    - Every ObjectId, nested ones included, is a string on read, so cached
      and freshly read documents have the same shape
    - Connection is verified with a ping before the store reports connected

How to change safely:
    - Keep the id conversion symmetric between filters and results
    - Test against a real MongoDB (tests/e2e) after driver upgrades
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config import MongoConfig
from .base import (
    USERS_COLLECTION,
    DeleteResult,
    Document,
    Filter,
    StoreConnectionError,
    StoreError,
    UpdateResult,
)

logger = logging.getLogger(__name__)


def _to_store_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _to_store_filter(filter: Filter) -> Filter:
    converted: Filter = {}
    for key, condition in filter.items():
        if key in ("$or", "$and"):
            converted[key] = [_to_store_filter(sub) for sub in condition]
        elif key == "_id":
            if isinstance(condition, dict) and "$in" in condition:
                converted[key] = {**condition, "$in": [_to_store_id(v) for v in condition["$in"]]}
            else:
                converted[key] = _to_store_id(condition)
        else:
            converted[key] = condition
    return converted


def _stringify_ids(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: _stringify_ids(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_stringify_ids(item) for item in value]
    return value


def _from_store(doc: Optional[Dict[str, Any]]) -> Optional[Document]:
    if doc is None:
        return None
    return _stringify_ids(doc)


class MongoDocumentStore:
    """MongoDB implementation of DocumentStore.

    Attributes:
        config: MongoDB configuration

    Example:
        >>> store = MongoDocumentStore(MongoConfig(host="localhost"))
        >>> await store.connect()
        >>> await store.find_one("entity", {"_id": "65a0c0ffee0000000000beef"})
    """

    def __init__(self, config: MongoConfig, client: AsyncMongoClient | None = None) -> None:
        """Initialize the MongoDB store.

        Args:
            config: MongoDB configuration
            client: Optional pre-built client (tests)
        """
        self.config = config
        self._client = client
        self._connected = False

    async def connect(self) -> None:
        """Connect and ping, retrying with exponential backoff.

        Raises:
            StoreConnectionError: If every attempt fails
        """
        if self._client is None:
            self._client = AsyncMongoClient(self.config.connection_url)

        delay = self.config.retry_delay_ms / 1000
        for attempt in range(1, self.config.connect_retries + 1):
            try:
                await self._client.admin.command("ping")
                self._connected = True
                logger.info(
                    "Connected to MongoDB",
                    extra={"database": self.config.repository_db, "attempt": attempt},
                )
                return
            except ConnectionFailure as e:
                logger.warning(
                    f"MongoDB connection attempt {attempt}/{self.config.connect_retries} failed: {e}"
                )
                if attempt < self.config.connect_retries:
                    await asyncio.sleep(delay)
                    delay *= 2

        raise StoreConnectionError(
            f"Could not connect to MongoDB after {self.config.connect_retries} attempts"
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._connected = False
        logger.info("MongoDB connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _collection(self, name: str):
        if self._client is None:
            raise StoreConnectionError("Store not connected", collection=name)
        db_name = self.config.accounts_db if name == USERS_COLLECTION else self.config.repository_db
        return self._client[db_name][name]

    async def find_one(self, collection: str, filter: Filter) -> Optional[Document]:
        try:
            doc = await self._collection(collection).find_one(_to_store_filter(filter))
        except PyMongoError as e:
            raise StoreError(f"find_one failed: {e}", collection=collection) from e
        return _from_store(doc)

    async def find(self, collection: str, filter: Filter) -> List[Document]:
        try:
            cursor = self._collection(collection).find(_to_store_filter(filter))
            docs = await cursor.to_list(None)
        except PyMongoError as e:
            raise StoreError(f"find failed: {e}", collection=collection) from e
        return [_from_store(doc) for doc in docs]

    async def insert_one(self, collection: str, document: Document) -> str:
        doc = dict(document)
        if doc.get("_id"):
            doc["_id"] = _to_store_id(doc["_id"])
        else:
            doc.pop("_id", None)
        try:
            result = await self._collection(collection).insert_one(doc)
        except PyMongoError as e:
            raise StoreError(f"insert_one failed: {e}", collection=collection) from e
        return str(result.inserted_id)

    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Dict[str, Any],
        upsert: bool = False,
    ) -> UpdateResult:
        try:
            result = await self._collection(collection).update_one(
                _to_store_filter(filter), update, upsert=upsert
            )
        except PyMongoError as e:
            raise StoreError(f"update_one failed: {e}", collection=collection) from e
        return UpdateResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=str(result.upserted_id) if result.upserted_id is not None else None,
        )

    async def update_many(self, collection: str, filter: Filter, update: Dict[str, Any]) -> UpdateResult:
        try:
            result = await self._collection(collection).update_many(_to_store_filter(filter), update)
        except PyMongoError as e:
            raise StoreError(f"update_many failed: {e}", collection=collection) from e
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        try:
            result = await self._collection(collection).delete_one(_to_store_filter(filter))
        except PyMongoError as e:
            raise StoreError(f"delete_one failed: {e}", collection=collection) from e
        return DeleteResult(deleted_count=result.deleted_count)

    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        try:
            result = await self._collection(collection).delete_many(_to_store_filter(filter))
        except PyMongoError as e:
            raise StoreError(f"delete_many failed: {e}", collection=collection) from e
        return DeleteResult(deleted_count=result.deleted_count)
