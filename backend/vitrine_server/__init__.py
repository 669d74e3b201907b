"""
Vitrine Server - Document-graph core for a digital heritage repository.

This package implements the storage-facing core of the repository:
- Resolving stored reference graphs into hydrated documents
- Saving hydrated graphs back as normalized, cross-referenced documents
- Deleting documents together with their dependent records

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────┐
    │   Resolver   │     │    Saver     │     │   Deletion   │
    │  (hydrate)   │     │  (cascade)   │     │   Cascade    │
    └──────┬───────┘     └──────┬───────┘     └──────┬───────┘
           │                    │                    │
           ├────────────────────┼────────────────────┤
           ▼                    ▼                    ▼
    ┌──────────────┐     ┌──────────────┐     ┌──────────────┐
    │ HookRegistry │     │    Cache     │     │DocumentStore │
    │ (per phase)  │     │(Redis/memory)│     │(Mongo/memory)│
    └──────────────┘     └──────────────┘     └──────────────┘

Invariants:
    - The document store is the source of truth, the cache is best effort
    - Owner-keyed relation maps are merged on save, never overwritten
    - Nested children are persisted before their parent
    - Hook failures never abort the operation that triggered them

How to change safely:
    - New document variants need a Collection member, a DocumentTypeDef,
      a resolve step and a transform
    - Keep relation filtering in resolve/relations.py only
"""

from ._version import __version__

__all__ = ["__version__"]
