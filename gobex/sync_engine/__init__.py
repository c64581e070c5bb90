"""
Gobex Sync Engine - offline-first, multi-tenant synchronization core.

This package implements the data core of the Gobex bar-management client:
- Tenant isolation of every persisted record, keyed by a license-derived id
- A local SQLite store that stays authoritative between synchronizations
- Periodic, manual and debounced reconciliation against a remote backend
- Whole-snapshot last-write-wins conflict resolution with bounded retries

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────────┐
    │ License Gate │────▶│Tenant Context│────▶│ Sync Orchestrator│
    └──────────────┘     └──────┬───────┘     └────────┬─────────┘
                                │                      │
                                ▼                      ▼
                         ┌─────────────┐       ┌───────────────┐
                         │ Local Store │◀─────▶│ Remote Backend│
                         │  (SQLite)   │       │  (HTTP API)   │
                         └─────────────┘       └───────────────┘

Invariants:
    - The local store is the source of truth between synchronizations
    - A tenant id of None denotes the owner partition, never synchronized
    - At most one sync attempt is in flight per tenant
    - Upload always precedes download within one attempt

How to change safely:
    - Snapshot wire keys are shared with deployed clients, only add new ones
    - Keep the retry policy fixed-delay, timing tests depend on it
"""

from ._version import __version__

__all__ = ["__version__"]
