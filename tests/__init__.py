"""
Vitrine Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (in-memory store and cache)
- e2e/: End-to-end tests (MongoDB and Redis)
"""
