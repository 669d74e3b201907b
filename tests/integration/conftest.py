"""
Shared fixtures for integration tests.

Every fixture runs against the in-memory store and cache, wired the same
way RepositoryCore wires them, but with the hook registry left open so
tests can register their own hooks.
"""

from dataclasses import dataclass

import pytest

from backend.vitrine_server.cache import InMemoryCache
from backend.vitrine_server.delete import DeletionCascade
from backend.vitrine_server.hooks import HookRegistry
from backend.vitrine_server.ownership import ActingUser, OwnershipManager
from backend.vitrine_server.resolve import Resolver
from backend.vitrine_server.save import PreviewStore, Saver
from backend.vitrine_server.store import InMemoryDocumentStore


@dataclass
class Engine:
    store: InMemoryDocumentStore
    cache: InMemoryCache
    hooks: HookRegistry
    ownership: OwnershipManager
    resolver: Resolver
    saver: Saver
    deletion: DeletionCascade


@pytest.fixture
async def store():
    store = InMemoryDocumentStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def cache():
    return InMemoryCache("entities", default_ttl=60)


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def user():
    return ActingUser(_id="u1", username="ada", fullname="Ada Lovelace")


@pytest.fixture
def other_user():
    return ActingUser(_id="u2", username="grace", fullname="Grace Hopper")


@pytest.fixture
def engine(store, cache, hooks, tmp_path):
    ownership = OwnershipManager(store)
    resolver = Resolver(store, cache, hooks)
    saver = Saver(store, cache, hooks, resolver, ownership, PreviewStore(str(tmp_path)))
    deletion = DeletionCascade(store, cache, hooks, ownership)
    return Engine(store, cache, hooks, ownership, resolver, saver, deletion)


@pytest.fixture
def make_entity():
    """Factory for full entity documents."""

    def make(ident="E1", **fields):
        doc = {
            "_id": ident,
            "name": "Bronze Vase",
            "mediaType": "model",
            "online": True,
            "finished": True,
            "annotations": {},
            "relatedDigitalEntity": {"_id": "D1"},
        }
        doc.update(fields)
        return doc

    return make


@pytest.fixture
def make_annotation():
    """Factory for full annotation documents."""

    def make(ident, entity_id="E1", compilation_id="", body=None):
        return {
            "_id": ident,
            "body": body or {"content": {"relatedPerspective": {"cameraType": "arcRotateCam"}, "title": ident}},
            "target": {
                "source": {"relatedEntity": entity_id, "relatedCompilation": compilation_id},
            },
        }

    return make
