"""
Per-collection hook pipeline for Vitrine Server.

Invariants:
    - Hooks are registered at startup and the registry is frozen before use
    - A failing hook never aborts the operation that ran it
"""

from .registry import HookCallback, HookPhase, HookRegistry, RegistryFrozenError

__all__ = [
    "HookCallback",
    "HookPhase",
    "HookRegistry",
    "RegistryFrozenError",
]
