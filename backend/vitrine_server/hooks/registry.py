"""
Hook registry for per-collection pipeline extensions.

Hooks let other subsystems (search indexing, derived-property upkeep)
observe and rewrite documents at four points:
- onTransform: after the saver's transform, before the store write
- onResolve: after a document is fetched, before nested resolution
- onDelete: after a document was deleted
- afterSave: after the store write, whether it succeeded or not

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Hooks for a (collection, phase) pair run in registration order
    - Each hook receives a deep copy of the current value
    - A failing hook is logged and skipped; the fold continues with the
      value from before that hook

How to change safely:
    - Register all hooks before calling freeze()
    - Hooks must return the (possibly modified) document
"""

from __future__ import annotations

import copy
import inspect
import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union, TYPE_CHECKING

from ..model import Collection

if TYPE_CHECKING:
    from ..ownership import ActingUser

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
HookCallback = Callable[[Document, Optional["ActingUser"]], Union[Document, Awaitable[Document]]]


class HookPhase(Enum):
    """Pipeline phases at which hooks run."""

    ON_TRANSFORM = "onTransform"
    ON_RESOLVE = "onResolve"
    ON_DELETE = "onDelete"
    AFTER_SAVE = "afterSave"


class RegistryFrozenError(Exception):
    """Raised when attempting to add a hook to a frozen registry."""
    pass


class HookRegistry:
    """Ordered hook lists keyed by (collection, phase).

    Example:
        >>> hooks = HookRegistry()
        >>> async def tag_lower(doc, user):
        ...     doc["value"] = doc["value"].lower()
        ...     return doc
        >>> hooks.add_hook(Collection.TAG, HookPhase.ON_TRANSFORM, tag_lower)
        >>> hooks.freeze()
        >>> await hooks.run_hooks(Collection.TAG, HookPhase.ON_TRANSFORM, {"value": "Bronze"})
        {'value': 'bronze'}
    """

    def __init__(self) -> None:
        self._hooks: Dict[Tuple[Collection, HookPhase], List[HookCallback]] = defaultdict(list)
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    def add_hook(self, collection: Collection, phase: HookPhase, callback: HookCallback) -> None:
        """Append a hook for a collection and phase.

        Args:
            collection: Collection the hook applies to
            phase: Pipeline phase
            callback: (doc, acting_user) -> doc, sync or async

        Raises:
            RegistryFrozenError: If registry is frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot add {phase.value} hook for '{collection.value}': registry is frozen"
                )
            self._hooks[(collection, phase)].append(callback)
        logger.debug(f"Registered {phase.value} hook for {collection.value}: {_name(callback)}")

    def hooks_for(self, collection: Collection, phase: HookPhase) -> Tuple[HookCallback, ...]:
        return tuple(self._hooks.get((collection, phase), ()))

    def freeze(self) -> None:
        """Close the registration phase.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Hook registry is already frozen")
            self._frozen = True
        logger.info(
            f"Hook registry frozen with {sum(len(v) for v in self._hooks.values())} hooks"
        )

    async def run_hooks(
        self,
        collection: Collection,
        phase: HookPhase,
        doc: Document,
        acting_user: Optional["ActingUser"] = None,
    ) -> Document:
        """Fold doc through every hook of (collection, phase).

        Args:
            collection: Collection of doc
            phase: Pipeline phase
            doc: Current document value
            acting_user: User on whose behalf the operation runs

        Returns:
            The value after the last successful hook
        """
        current = doc
        for callback in self.hooks_for(collection, phase):
            try:
                result = callback(copy.deepcopy(current), acting_user)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(
                    f"{phase.value} hook {_name(callback)} failed for {collection.value}: {e}",
                    exc_info=True,
                )
                continue
            if not isinstance(result, dict):
                logger.warning(
                    f"{phase.value} hook {_name(callback)} returned "
                    f"{type(result).__name__} instead of a document for {collection.value}"
                )
                continue
            current = result
        return current


def _name(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__qualname__", repr(callback))
