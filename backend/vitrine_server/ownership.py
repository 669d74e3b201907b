"""
Acting users, possession lists and access maps.

A user owns a document if either:
- its identifier is in the user's possession list user.data[collection], or
- the document's access map grants the user the "owner" role.

Entities and compilations carry access maps {user_id: role} with roles
owner > editor > viewer.

Invariants:
    - Possession lists never contain duplicates
    - Possession lists are persisted as a whole ($set on "data")
    - Ownership checks never raise for unknown users or documents

How to change safely:
    - New roles must be inserted into ROLE_RANK at the right level
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .model import Collection, to_id
from .store import USERS_COLLECTION, DocumentStore

logger = logging.getLogger(__name__)


class AccessRole(Enum):
    """Roles in a document's access map."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


ROLE_RANK: Dict[AccessRole, int] = {
    AccessRole.VIEWER: 1,
    AccessRole.EDITOR: 2,
    AccessRole.OWNER: 3,
}


class ActingUser(BaseModel):
    """The user on whose behalf an operation runs.

    Attributes:
        id: User identifier (serialized as _id)
        username: Login name
        fullname: Display name
        data: Possession lists, collection tag -> document identifiers
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    username: str = ""
    fullname: str = ""
    data: Dict[str, List[str]] = Field(default_factory=dict)

    def stripped(self) -> Dict[str, Any]:
        """Public projection embedded in documents (creator, lastModifiedBy)."""
        return {"_id": self.id, "username": self.username, "fullname": self.fullname}

    def possessions(self, collection: Collection) -> List[str]:
        return self.data.get(collection.value, [])


class OwnershipManager:
    """Maintains possession lists and answers ownership questions.

    Example:
        >>> ownership = OwnershipManager(store)
        >>> await ownership.make_owner_of(user, Collection.ENTITY, ["65a0..."])
        True
        >>> ownership.is_owner(user, Collection.ENTITY, {"_id": "65a0..."})
        True
    """

    def __init__(self, store: DocumentStore, users_collection: str = USERS_COLLECTION) -> None:
        self._store = store
        self._users_collection = users_collection

    async def _persist(self, user: ActingUser) -> bool:
        result = await self._store.update_one(
            self._users_collection,
            {"_id": user.id},
            {"$set": {"data": user.data}},
            upsert=True,
        )
        return result.acknowledged

    async def make_owner_of(self, user: ActingUser, collection: Collection, ids: Iterable[Any]) -> bool:
        """Add documents to the user's possession list and persist it.

        Args:
            user: Acting user (updated in place)
            collection: Collection of the documents
            ids: Identifiers or documents

        Returns:
            True if the list was persisted (or nothing had to change)
        """
        owned = user.data.setdefault(collection.value, [])
        added = False
        for value in ids:
            ident = to_id(value)
            if ident and ident not in owned:
                owned.append(ident)
                added = True
        if not added:
            return True
        return await self._persist(user)

    async def undo_owner_of(self, user: ActingUser, collection: Collection, ids: Iterable[Any]) -> bool:
        """Remove documents from the user's possession list and persist it."""
        remove = {ident for ident in (to_id(v) for v in ids) if ident}
        owned = user.data.get(collection.value, [])
        kept = [ident for ident in owned if ident not in remove]
        if len(kept) == len(owned):
            return True
        user.data[collection.value] = kept
        return await self._persist(user)

    def role_of(self, user: ActingUser, doc: Optional[Dict[str, Any]]) -> Optional[AccessRole]:
        """Role granted to user by doc's access map, if any."""
        if not isinstance(doc, dict):
            return None
        access = doc.get("access")
        if not isinstance(access, dict):
            return None
        try:
            return AccessRole(access.get(user.id))
        except ValueError:
            return None

    def has_role(self, user: ActingUser, doc: Optional[Dict[str, Any]], role: AccessRole) -> bool:
        granted = self.role_of(user, doc)
        return granted is not None and ROLE_RANK[granted] >= ROLE_RANK[role]

    def is_owner(self, user: ActingUser, collection: Collection, doc: Any) -> bool:
        """Whether user owns doc via possession list or access map."""
        ident = to_id(doc)
        if ident and ident in user.possessions(collection):
            return True
        return self.role_of(user, doc if isinstance(doc, dict) else None) == AccessRole.OWNER
