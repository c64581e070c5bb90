"""
Tenant-bound view over the local store.

Application modules hold a TenantScopedStore and never pass tenant ids
themselves: every call reads the active tenant from the TenantContext at
call time, and every successful mutation notifies listeners (the session
wires the orchestrator's debounced sync here). With no active tenant
every call raises NoActiveTenantError instead of falling back to the
owner partition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..tenant import TenantContext
from .local_store import LocalStore

logger = logging.getLogger(__name__)

MutationListener = Callable[[str | None, str], None]


class TenantScopedStore:
    """CRUD view of a LocalStore for the context's active tenant.

    Listeners are called after the write has been committed, with
    (tenant_id, collection). A failing listener is logged and does not
    undo or fail the write.

    Example:
        >>> products = TenantScopedStore(store, ctx)
        >>> products.add_listener(lambda tenant, coll: orchestrator.schedule_sync(tenant))
        >>> await products.put("products", {"id": "P1", "nom": "Flag"})
    """

    def __init__(self, store: LocalStore, context: TenantContext) -> None:
        self.store = store
        self.context = context
        self._listeners: list[MutationListener] = []

    def add_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MutationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def get(self, collection: str) -> list[dict[str, Any]]:
        return await self.store.get(self.context.get_tenant(), collection)

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return await self.store.get_record(self.context.get_tenant(), collection, record_id)

    async def put(self, collection: str, record: dict[str, Any]) -> None:
        tenant_id = self.context.get_tenant()
        await self.store.put(tenant_id, collection, record)
        self._notify(tenant_id, collection)

    async def delete(self, collection: str, record_id: str) -> bool:
        tenant_id = self.context.get_tenant()
        removed = await self.store.delete(tenant_id, collection, record_id)
        if removed:
            self._notify(tenant_id, collection)
        return removed

    async def get_settings(self) -> dict[str, Any]:
        return await self.store.get_settings(self.context.get_tenant())

    async def put_settings(self, settings: dict[str, Any]) -> None:
        tenant_id = self.context.get_tenant()
        await self.store.put_settings(tenant_id, settings)
        self._notify(tenant_id, "settings")

    def _notify(self, tenant_id: str | None, collection: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(tenant_id, collection)
            except Exception as e:
                logger.warning(f"Mutation listener failed: {e}", exc_info=True)
