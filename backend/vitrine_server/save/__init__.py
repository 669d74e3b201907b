"""
Cascading persistence for Vitrine Server.

Invariants:
    - Nested children are saved before their parent
    - Owner-keyed relation maps are merged with the stored document
"""

from .previews import PreviewStore
from .saver import AnnotationPermissions, Saver
from .transforms import DocumentTransformer, derive_compilation_filterables

__all__ = [
    "Saver",
    "AnnotationPermissions",
    "DocumentTransformer",
    "PreviewStore",
    "derive_compilation_filterables",
]
