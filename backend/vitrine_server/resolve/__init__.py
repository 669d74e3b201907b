"""
Reference-graph resolution for Vitrine Server.

Invariants:
    - Resolution never raises; absent or failed documents yield None
    - Relation filtering lives in relations.py only
"""

from .relations import SCOPED_COLLECTIONS, filter_relations
from .resolver import DEFAULT_MAX_DEPTH, Resolver

__all__ = [
    "Resolver",
    "DEFAULT_MAX_DEPTH",
    "filter_relations",
    "SCOPED_COLLECTIONS",
]
