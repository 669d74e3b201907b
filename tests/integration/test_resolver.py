"""
Integration tests for the Resolver.

Tests cover:
- Depth budget
- Annotation queries and element drops
- onResolve hooks and identifier forcing
- Failure handling (store and nested steps)
- Cache snapshots
- resolve_any and resolve_possessions
"""

import pytest

from backend.vitrine_server.hooks import HookPhase
from backend.vitrine_server.model import Collection


@pytest.fixture
async def graph(store, make_entity, make_annotation):
    """E1 -> D1 -> (P1, I1 -> AD1, T1, PE1); C1 contains E1."""
    await store.insert_one("entity", make_entity("E1", annotations={"A9": {"_id": "A9"}}))
    await store.insert_one(
        "digitalentity",
        {
            "_id": "D1",
            "type": "object",
            "licence": "CC-BY",
            "persons": [{"_id": "P1"}],
            "institutions": [{"_id": "I1"}],
            "tags": [{"_id": "T1"}, {"_id": "T404"}],
            "phyObjs": [{"_id": "PE1"}],
        },
    )
    await store.insert_one(
        "person",
        {
            "_id": "P1",
            "prename": "Ada",
            "name": "Lovelace",
            "roles": {"D1": ["CREATOR"], "D9": ["EDITOR"]},
            "institutions": {"D1": [{"_id": "I1"}], "D9": [{"_id": "I2"}]},
            "contact_references": {"D1": {"_id": "CT1"}},
        },
    )
    await store.insert_one(
        "institution",
        {
            "_id": "I1",
            "name": "Museum",
            "addresses": {"D1": {"_id": "AD1"}, "D9": {"_id": "AD2"}},
            "roles": {"D1": ["RIGHTS_OWNER"]},
            "notes": {},
        },
    )
    await store.insert_one("address", {"_id": "AD1", "street": "Main", "city": "Cologne"})
    await store.insert_one("contact", {"_id": "CT1", "mail": "ada@example.org"})
    await store.insert_one("tag", {"_id": "T1", "value": "bronze"})
    await store.insert_one("physicalentity", {"_id": "PE1", "title": "Vase", "place": "Cologne"})
    await store.insert_one("annotation", make_annotation("A1"))
    await store.insert_one("annotation", make_annotation("A2", compilation_id="C1"))
    await store.insert_one(
        "compilation",
        {"_id": "C1", "name": "Finds", "description": "", "entities": {"E1": {"_id": "E1"}, "E404": None}},
    )
    return store


class TestDepth:
    """Tests for the depth budget."""

    @pytest.mark.asyncio
    async def test_depth_zero_leaves_references(self, engine, graph):
        """Depth 0 returns the stored document with references untouched."""
        entity = await engine.resolver.resolve("E1", Collection.ENTITY, depth=0)

        assert entity["name"] == "Bronze Vase"
        assert entity["relatedDigitalEntity"] == {"_id": "D1"}
        assert entity["annotations"] == {"A9": {"_id": "A9"}}

    @pytest.mark.asyncio
    async def test_depth_one_resolves_one_level(self, engine, graph):
        """Depth 1 hydrates direct children only."""
        entity = await engine.resolver.resolve("E1", Collection.ENTITY, depth=1)

        digital = entity["relatedDigitalEntity"]
        assert digital["licence"] == "CC-BY"
        assert digital["persons"] == [{"_id": "P1"}]

    @pytest.mark.asyncio
    async def test_full_depth(self, engine, graph):
        """Default depth hydrates the whole graph."""
        entity = await engine.resolver.resolve({"_id": "E1"}, Collection.ENTITY)

        digital = entity["relatedDigitalEntity"]
        person = digital["persons"][0]
        assert person["contact_references"] == {"D1": {"_id": "CT1", "mail": "ada@example.org"}}
        assert person["institutions"]["D1"][0]["addresses"]["D1"]["city"] == "Cologne"
        assert [tag["value"] for tag in digital["tags"]] == ["bronze"]
        assert digital["phyObjs"][0]["title"] == "Vase"
        assert digital["institutions"][0]["addresses"] == {
            "D1": {"_id": "AD1", "street": "Main", "city": "Cologne"}
        }


class TestRelationScoping:
    """Nested persons and institutions are reduced to their owner's slice."""

    @pytest.mark.asyncio
    async def test_person_scoped_to_digital_entity(self, engine, graph):
        """Nested persons expose only the digital entity's slice."""
        digital = await engine.resolver.resolve("D1", Collection.DIGITAL_ENTITY)

        person = digital["persons"][0]
        assert person["roles"] == {"D1": ["CREATOR"]}
        assert list(person["institutions"]) == ["D1"]

    @pytest.mark.asyncio
    async def test_missing_role_defaults_to_empty(self, engine, graph):
        """A person without a role for the owner gets an empty one."""
        await graph.update_one("person", {"_id": "P1"}, {"$set": {"roles": {"D9": ["EDITOR"]}}})

        digital = await engine.resolver.resolve("D1", Collection.DIGITAL_ENTITY)

        assert digital["persons"][0]["roles"] == {"D1": []}

    @pytest.mark.asyncio
    async def test_top_level_person_unfiltered(self, engine, graph):
        """Resolving a person directly keeps every owner key."""
        person = await engine.resolver.resolve("P1", Collection.PERSON, depth=0)

        assert set(person["roles"]) == {"D1", "D9"}


class TestAnnotations:
    """Tests for annotation resolution."""

    @pytest.mark.asyncio
    async def test_entity_gets_standalone_annotations_only(self, engine, graph):
        """Annotations attached to a compilation are not merged into the entity."""
        entity = await engine.resolver.resolve("E1", Collection.ENTITY)

        assert list(entity["annotations"]) == ["A1"]

    @pytest.mark.asyncio
    async def test_compilation_annotations_and_entities(self, engine, graph):
        """Compilation annotations come from the query; missing entities drop."""
        compilation = await engine.resolver.resolve("C1", Collection.COMPILATION, depth=1)

        assert list(compilation["annotations"]) == ["A2"]
        assert list(compilation["entities"]) == ["E1"]
        assert compilation["entities"]["E1"]["relatedDigitalEntity"] == {"_id": "D1"}


class TestHooks:
    """Tests for onResolve hooks."""

    @pytest.mark.asyncio
    async def test_hook_output_used_with_forced_id(self, engine, graph):
        """onResolve output is returned with the canonical _id."""
        async def decorate(doc, user):
            return {**doc, "_id": "hijacked", "value": doc["value"].upper()}

        engine.hooks.add_hook(Collection.TAG, HookPhase.ON_RESOLVE, decorate)

        tag = await engine.resolver.resolve("T1", Collection.TAG)

        assert tag == {"_id": "T1", "value": "BRONZE"}

    @pytest.mark.asyncio
    async def test_non_document_hook_output_ignored(self, engine, graph):
        engine.hooks.add_hook(Collection.TAG, HookPhase.ON_RESOLVE, lambda doc, user: [doc])

        tag = await engine.resolver.resolve("T1", Collection.TAG)

        assert tag == {"_id": "T1", "value": "bronze"}


class TestFailures:
    """Tests for failure handling."""

    @pytest.mark.asyncio
    async def test_missing_document(self, engine, graph):
        assert await engine.resolver.resolve("E404", Collection.ENTITY) is None

    @pytest.mark.asyncio
    async def test_invalid_reference(self, engine, graph):
        assert await engine.resolver.resolve("", Collection.ENTITY) is None
        assert await engine.resolver.resolve(None, Collection.ENTITY) is None

    @pytest.mark.asyncio
    async def test_store_failure_is_a_miss(self, engine, graph):
        """A failing store read resolves to None."""
        graph.fail("find_one", "entity")

        assert await engine.resolver.resolve("E1", Collection.ENTITY) is None

    @pytest.mark.asyncio
    async def test_nested_step_failure_fails_whole_call(self, engine, graph):
        """An error in the nested step fails the whole resolve."""
        graph.fail("find", "annotation")

        assert await engine.resolver.resolve("E1", Collection.ENTITY) is None
        assert await engine.resolver.resolve("E1", Collection.ENTITY, depth=0) is not None

    @pytest.mark.asyncio
    async def test_element_failure_only_drops_element(self, engine, graph):
        """A failing list element is dropped, siblings survive."""
        graph.fail("find_one", "tag")

        digital = await engine.resolver.resolve("D1", Collection.DIGITAL_ENTITY)

        assert digital["tags"] == []
        assert digital["persons"][0]["prename"] == "Ada"

    @pytest.mark.asyncio
    async def test_dangling_digital_entity_kept_as_reference(self, engine, graph, make_entity):
        """An unresolvable digital entity stays a reference."""
        await graph.insert_one("entity", make_entity("E2", relatedDigitalEntity={"_id": "D404"}))

        entity = await engine.resolver.resolve("E2", Collection.ENTITY)

        assert entity["relatedDigitalEntity"] == {"_id": "D404"}


class TestCaching:
    """Tests for the cache interplay."""

    @pytest.mark.asyncio
    async def test_store_read_is_cached_before_nesting(self, engine, graph, cache):
        """The cache holds the stored document, not the hydrated one."""
        await engine.resolver.resolve("E1", Collection.ENTITY)

        cached = await cache.get("entity::E1")
        assert cached["relatedDigitalEntity"] == {"_id": "D1"}

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, engine, graph):
        await engine.resolver.resolve("T1", Collection.TAG)
        graph.fail("find_one", "tag")

        tag = await engine.resolver.resolve("T1", Collection.TAG)

        assert tag["value"] == "bronze"

    @pytest.mark.asyncio
    async def test_hydrated_input_not_read_from_store(self, engine, graph, cache):
        """Hydrated input skips the store and is cached."""
        graph.fail("find_one")

        tag = await engine.resolver.resolve({"_id": "T7", "value": "iron"}, Collection.TAG)

        assert tag == {"_id": "T7", "value": "iron"}
        assert await cache.get("tag::T7") == {"_id": "T7", "value": "iron"}

    @pytest.mark.asyncio
    async def test_failing_cache_is_transparent(self, engine, graph, cache):
        """Resolution works with every cache call failing."""
        cache.set_failing()

        entity = await engine.resolver.resolve("E1", Collection.ENTITY)

        assert entity["relatedDigitalEntity"]["licence"] == "CC-BY"


class TestEntryPoints:
    """Tests for resolve_any and resolve_possessions."""

    @pytest.mark.asyncio
    async def test_resolve_any(self, engine, graph):
        tag = await engine.resolver.resolve_any("tag", "T1")

        assert tag["value"] == "bronze"

    @pytest.mark.asyncio
    async def test_resolve_any_unknown_collection(self, engine, graph):
        with pytest.raises(ValueError, match="Unknown collection"):
            await engine.resolver.resolve_any("spaceship", "X1")

    @pytest.mark.asyncio
    async def test_resolve_possessions(self, engine, graph, user):
        """Possession lists are deduplicated and hydrated."""
        user.data = {"entity": ["E1", "E1", "E404"], "tag": ["T1"], "favourites": ["x"]}

        data = await engine.resolver.resolve_possessions(user, depth=0)

        assert [e["_id"] for e in data["entity"]] == ["E1"]
        assert data["tag"] == [{"_id": "T1", "value": "bronze"}]
        assert data["favourites"] == ["x"]
        assert user.data["entity"] == ["E1", "E1", "E404"]
