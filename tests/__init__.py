"""
Gobex Sync Engine Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite files, in-memory backend)
- integration/: Integration tests (HTTP client against the reference
  backend over ASGI, full session flow)
"""
