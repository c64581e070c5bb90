"""
Snapshot repository of the reference sync backend.

Holds one snapshot per tenant with the instant it was last written.
Every put replaces the previous snapshot wholesale.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..backend import utcnow


@dataclass
class StoredTenantSnapshot:
    data: dict[str, Any]
    last_sync: datetime


class SnapshotRepository:
    """In-memory snapshot storage keyed by tenant id."""

    def __init__(self) -> None:
        self._snapshots: dict[str, StoredTenantSnapshot] = {}
        self._lock = asyncio.Lock()

    async def put(self, tenant_id: str, data: dict[str, Any]) -> datetime:
        """Store a tenant snapshot and return its new last_sync."""
        async with self._lock:
            now = utcnow()
            self._snapshots[tenant_id] = StoredTenantSnapshot(copy.deepcopy(data), now)
            return now

    async def get(self, tenant_id: str) -> StoredTenantSnapshot | None:
        async with self._lock:
            stored = self._snapshots.get(tenant_id)
            if stored is None:
                return None
            return StoredTenantSnapshot(copy.deepcopy(stored.data), stored.last_sync)

    def tenant_count(self) -> int:
        return len(self._snapshots)
