"""
Reverse lookups between documents.

Child documents do not know their parents; these helpers find them with
store queries. The filters are shared by the resolver (which merges
standalone annotations into entities) and the deletion cascade (which
removes them), so both agree on what "belongs to" means.
"""

from __future__ import annotations

from typing import Any, Dict, List

from .model import Collection
from .store import DocumentStore


def entity_annotations_filter(entity_id: str) -> Dict[str, Any]:
    """Annotations about an entity that are not attached to a compilation."""
    return {
        "target.source.relatedEntity": entity_id,
        "target.source.relatedCompilation": {"$in": [None, ""]},
    }


def compilation_annotations_filter(compilation_id: str) -> Dict[str, Any]:
    return {"target.source.relatedCompilation": compilation_id}


def compilations_containing_filter(entity_id: str) -> Dict[str, Any]:
    return {f"entities.{entity_id}": {"$exists": True}}


async def find_parent_compilations(store: DocumentStore, entity_id: str) -> List[Dict[str, Any]]:
    """Compilations whose entities map contains entity_id."""
    return await store.find(Collection.COMPILATION.value, compilations_containing_filter(entity_id))


async def find_parent_entities(store: DocumentStore, digital_entity_id: str) -> List[Dict[str, Any]]:
    """Entities whose relatedDigitalEntity is digital_entity_id."""
    return await store.find(
        Collection.ENTITY.value,
        {"relatedDigitalEntity._id": digital_entity_id},
    )
