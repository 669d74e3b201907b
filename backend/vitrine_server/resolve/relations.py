"""
Owner-scoped relation filtering.

Persons and institutions are shared between many metadata entities. Their
relation maps are keyed by the identifier of the entity that established
the relation (roles, institutions, contact_references on persons; roles,
addresses, notes on institutions). When such a record is shown on behalf
of one entity, only that entity's slice may be visible.

Invariants:
    - After filtering, every relation map holds at most the owner's key
    - Relation maps absent on the input stay absent
    - The input document is never mutated
"""

from __future__ import annotations

from typing import Any, Dict

from ..model import Collection, get_definition

SCOPED_COLLECTIONS = (Collection.PERSON, Collection.INSTITUTION)


def filter_relations(doc: Dict[str, Any], collection: Collection, owner_id: str) -> Dict[str, Any]:
    """Strip every owner-keyed relation map down to owner_id.

    Args:
        doc: Person or institution document
        collection: Collection of doc
        owner_id: Identifier of the entity the document is resolved for

    Returns:
        A shallow copy of doc with filtered relation maps
    """
    filtered = dict(doc)
    for field in get_definition(collection).relation_maps:
        relations = doc.get(field)
        if not isinstance(relations, dict):
            continue
        filtered[field] = {owner_id: relations[owner_id]} if owner_id in relations else {}
    return filtered
