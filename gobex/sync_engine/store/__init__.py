"""
Local store module for the Gobex sync engine.

Durable, tenant-scoped persistence of application collections:
- LocalStore: per-partition SQLite files, explicit tenant ids
- TenantScopedStore: view bound to a TenantContext with mutation listeners
- Snapshot: whole-partition unit of synchronization

Invariants:
    - Tenant A never observes or mutates tenant B's data
    - Local writes succeed independently of synchronization
"""

from .local_store import (
    COLLECTIONS,
    WIRE_KEYS,
    InvalidRecordError,
    LocalStore,
    Snapshot,
    StoreError,
    StoreUnavailableError,
)
from .scoped import TenantScopedStore

__all__ = [
    "LocalStore",
    "TenantScopedStore",
    "Snapshot",
    "StoreError",
    "StoreUnavailableError",
    "InvalidRecordError",
    "COLLECTIONS",
    "WIRE_KEYS",
]
