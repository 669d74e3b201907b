"""
Deletion cascade for Vitrine Server.
"""

from .cascade import DeleteOutcome, DeletionCascade

__all__ = ["DeleteOutcome", "DeletionCascade"]
