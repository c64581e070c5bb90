"""
API routes of the reference sync backend.

Each bearer token maps to exactly one tenant. A request for any other
tenant is refused with 403, which is the server-side half of tenant
isolation (the client never sends another tenant's id on its own).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..backend.http import PushResponse, SnapshotEnvelope
from ..tenant import InvalidTenantError, validate_tenant_id
from .config import Settings
from .repository import SnapshotRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Gobex Sync"])


# --- Request Models ---


class SnapshotUpload(BaseModel):
    """Snapshot upload body."""

    data: dict = Field(..., description="Whole tenant snapshot, wire keys")


# --- Dependencies ---


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repository(request: Request) -> SnapshotRepository:
    return request.app.state.repository


def authorize_tenant(
    tenant_id: str,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> str:
    """Check that the bearer token belongs to the requested tenant."""
    try:
        validate_tenant_id(tenant_id)
    except InvalidTenantError as e:
        raise HTTPException(status_code=400, detail=str(e))

    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    session_tenant = settings.tenant_for_token(token)
    if session_tenant is None:
        raise HTTPException(status_code=401, detail="Unknown token")
    if session_tenant != tenant_id:
        logger.warning(
            "Tenant mismatch refused",
            extra={"session_tenant": session_tenant, "requested_tenant": tenant_id},
        )
        raise HTTPException(status_code=403, detail="Tenant does not match the session")
    return tenant_id


# --- Routes ---


@router.put("/tenants/{tenant_id}/snapshot", response_model=PushResponse)
async def put_snapshot(
    body: SnapshotUpload,
    tenant_id: str = Depends(authorize_tenant),
    settings: Settings = Depends(get_settings),
    repository: SnapshotRepository = Depends(get_repository),
) -> PushResponse:
    """Replace the tenant's snapshot."""
    record_count = sum(len(v) for v in body.data.values() if isinstance(v, list))
    if record_count > settings.max_snapshot_records:
        raise HTTPException(status_code=413, detail="Snapshot too large")

    last_sync = await repository.put(tenant_id, body.data)
    logger.info("Stored snapshot", extra={"tenant_id": tenant_id, "record_count": record_count})
    return PushResponse(success=True, message="Snapshot stored", last_sync=last_sync)


@router.get("/tenants/{tenant_id}/snapshot", response_model=SnapshotEnvelope)
async def get_snapshot(
    tenant_id: str = Depends(authorize_tenant),
    repository: SnapshotRepository = Depends(get_repository),
) -> SnapshotEnvelope:
    """Return the tenant's snapshot, 404 when none was ever uploaded."""
    stored = await repository.get(tenant_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="No snapshot for this tenant")
    return SnapshotEnvelope(data=stored.data, last_sync=stored.last_sync)
