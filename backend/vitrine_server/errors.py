"""
Error types for Vitrine Server.

This module defines the exception types surfaced by the engine:
- RepositoryError: Base exception
- ValidationError: Incoming document failed its required-field check
- PermissionDeniedError: Pre-computed permission booleans forbid a write
- StoreError / StoreConnectionError: Document store failures
- CacheError: Cache backend failures (never escape the Cache wrapper)

Not-found is not an error: resolve returns None and delete returns a
failed outcome.

Invariants:
    - All errors inherit from RepositoryError
    - Errors carry a stable code for programmatic handling
    - Error details never include document bodies or secrets
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RepositoryError(Exception):
    """Base exception for all Vitrine Server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REPOSITORY_ERROR"
        self.details = details or {}


class ValidationError(RepositoryError):
    """Incoming document failed validation.

    Raised when:
    - A required field is missing
    - A field has the wrong shape (map vs list vs string)
    - A referenced identifier is malformed
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"collection": collection, "errors": errors or []},
        )
        self.collection = collection
        self.errors = errors or []


class PermissionDeniedError(RepositoryError):
    """Write forbidden by the caller's pre-computed permissions.

    Raised when:
    - An annotation targets an entity the user does not own
    - A compilation owner tries to change someone else's annotation body
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="PERMISSION_DENIED",
            details={"user_id": user_id, "document_id": document_id},
        )
        self.user_id = user_id
        self.document_id = document_id


class StoreError(RepositoryError):
    """Document store operation failed."""

    def __init__(self, message: str, collection: Optional[str] = None) -> None:
        super().__init__(message, code="STORE_ERROR", details={"collection": collection})
        self.collection = collection


class StoreConnectionError(StoreError):
    """Connection to the document store failed."""


class CacheError(RepositoryError):
    """Cache backend operation failed."""

    def __init__(self, message: str, namespace: Optional[str] = None) -> None:
        super().__init__(message, code="CACHE_ERROR", details={"namespace": namespace})
        self.namespace = namespace


class CacheConfigError(RepositoryError):
    """Cache namespaces are misconfigured (e.g. two namespaces share a DB)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CACHE_CONFIG_ERROR")
