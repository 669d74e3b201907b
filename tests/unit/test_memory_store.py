"""
Unit tests for the in-memory document store.

Tests cover:
- Connection lifecycle
- Filter subset (dotted paths, $exists, $in, $or)
- Update subset ($set, $unset) and upserts
- Failure injection and the operation log
"""

import pytest

from backend.vitrine_server.store import InMemoryDocumentStore, StoreConnectionError, StoreError


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.fixture
    async def store(self):
        store = InMemoryDocumentStore()
        await store.connect()
        await store.insert_one(
            "annotation",
            {"_id": "A1", "target": {"source": {"relatedEntity": "E1"}}},
        )
        await store.insert_one(
            "annotation",
            {"_id": "A2", "target": {"source": {"relatedEntity": "E1", "relatedCompilation": ""}}},
        )
        await store.insert_one(
            "annotation",
            {"_id": "A3", "target": {"source": {"relatedEntity": "E1", "relatedCompilation": "C1"}}},
        )
        return store

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = InMemoryDocumentStore()

        with pytest.raises(StoreConnectionError):
            await store.find_one("entity", {"_id": "E1"})

    @pytest.mark.asyncio
    async def test_find_one_by_id(self, store):
        doc = await store.find_one("annotation", {"_id": "A1"})

        assert doc["target"]["source"]["relatedEntity"] == "E1"
        assert await store.find_one("annotation", {"_id": "missing"}) is None

    @pytest.mark.asyncio
    async def test_returns_copies(self, store):
        doc = await store.find_one("annotation", {"_id": "A1"})
        doc["target"] = None

        assert (await store.find_one("annotation", {"_id": "A1"}))["target"] is not None

    @pytest.mark.asyncio
    async def test_in_with_none_matches_missing_and_empty(self, store):
        """None inside $in matches absent fields, like MongoDB."""
        found = await store.find(
            "annotation",
            {
                "target.source.relatedEntity": "E1",
                "target.source.relatedCompilation": {"$in": [None, ""]},
            },
        )

        assert sorted(doc["_id"] for doc in found) == ["A1", "A2"]

    @pytest.mark.asyncio
    async def test_exists_and_or(self, store):
        exists = await store.find("annotation", {"target.source.relatedCompilation": {"$exists": True}})
        either = await store.find(
            "annotation",
            {"$or": [{"_id": "A1"}, {"target.source.relatedCompilation": "C1"}]},
        )

        assert sorted(doc["_id"] for doc in exists) == ["A2", "A3"]
        assert sorted(doc["_id"] for doc in either) == ["A1", "A3"]

    @pytest.mark.asyncio
    async def test_equality_matches_array_members(self, store):
        await store.insert_one("group", {"_id": "G1", "members": ["u1", "u2"]})

        assert await store.find_one("group", {"members": "u2"}) is not None
        assert await store.find_one("group", {"members": "u3"}) is None

    @pytest.mark.asyncio
    async def test_update_set_and_unset_dotted(self, store):
        await store.insert_one("compilation", {"_id": "C1", "entities": {"E1": {"_id": "E1"}, "E2": {"_id": "E2"}}})

        result = await store.update_one("compilation", {"_id": "C1"}, {"$unset": {"entities.E1": ""}})
        await store.update_one("compilation", {"_id": "C1"}, {"$set": {"entities.E3": {"_id": "E3"}}})

        assert result.matched_count == 1
        assert result.modified_count == 1
        doc = await store.find_one("compilation", {"_id": "C1"})
        assert set(doc["entities"]) == {"E2", "E3"}

    @pytest.mark.asyncio
    async def test_update_without_change(self, store):
        result = await store.update_one(
            "annotation", {"_id": "A1"}, {"$set": {"target.source.relatedEntity": "E1"}}
        )

        assert result.matched_count == 1
        assert result.modified_count == 0
        assert result.acknowledged

    @pytest.mark.asyncio
    async def test_upsert(self, store):
        result = await store.update_one("tag", {"_id": "T1"}, {"$set": {"value": "bronze"}}, upsert=True)

        assert result.upserted_id == "T1"
        assert result.acknowledged
        assert await store.find_one("tag", {"_id": "T1"}) == {"_id": "T1", "value": "bronze"}

    @pytest.mark.asyncio
    async def test_update_without_upsert_misses(self, store):
        result = await store.update_one("tag", {"_id": "T1"}, {"$set": {"value": "bronze"}})

        assert not result.acknowledged
        assert store.get_all("tag") == []

    @pytest.mark.asyncio
    async def test_delete(self, store):
        one = await store.delete_one("annotation", {"_id": "A3"})
        many = await store.delete_many("annotation", {"target.source.relatedEntity": "E1"})

        assert one.deleted_count == 1
        assert many.deleted_count == 2
        assert store.get_all("annotation") == []

    @pytest.mark.asyncio
    async def test_duplicate_insert_raises(self, store):
        with pytest.raises(StoreError, match="Duplicate key"):
            await store.insert_one("annotation", {"_id": "A1"})

    @pytest.mark.asyncio
    async def test_failure_injection(self, store):
        store.fail("find", "annotation")

        with pytest.raises(StoreError):
            await store.find("annotation", {})
        assert await store.find("entity", {}) == []

        store.recover()
        assert len(await store.find("annotation", {})) == 3

    @pytest.mark.asyncio
    async def test_operation_log(self, store):
        await store.update_one("tag", {"_id": "T1"}, {"$set": {"value": "a"}}, upsert=True)
        await store.update_one("person", {"_id": "P1"}, {"$set": {"name": "b"}}, upsert=True)

        assert store.operations[-2:] == [
            ("update_one", "tag", "T1"),
            ("update_one", "person", "P1"),
        ]
        assert store.writes_to("tag") == ["T1"]

    @pytest.mark.asyncio
    async def test_update_many_with_and(self, store):
        """update_many touches every match of an $and filter."""
        result = await store.update_many(
            "annotation",
            {"$and": [{"target.source.relatedEntity": {"$eq": "E1"}}, {"_id": {"$ne": "A3"}}]},
            {"$set": {"ranking": 0}},
        )

        assert result.matched_count == 2
        assert result.modified_count == 2
        ranked = sorted(doc["_id"] for doc in await store.find("annotation", {"ranking": 0}))
        assert ranked == ["A1", "A2"]
