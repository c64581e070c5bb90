"""
HTTP client for the remote sync backend.

Wire contract:
    PUT {base}/v1/tenants/{tenant_id}/snapshot   body {"data": {...}}
        200 {"success": true, "message": "...", "last_sync": "<iso8601>"}
    GET {base}/v1/tenants/{tenant_id}/snapshot
        200 {"data": {...}, "last_sync": "<iso8601>"}
        404 when the tenant has no remote data yet

Status mapping:
    - 2xx: success
    - 404 on GET: success without data (first sync of a new tenant)
    - 408, 429, 5xx, network errors: BackendTransportError (retried)
    - Timeouts: BackendTimeoutError (retried)
    - Other 4xx: explicit rejection, retryable=False

Invariants:
    - The bearer token is never logged
    - Response bodies are validated before use
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..store import Snapshot
from .base import (
    BackendTimeoutError,
    BackendTransportError,
    PullResult,
    PushResult,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429}


class SnapshotEnvelope(BaseModel):
    """Snapshot as exchanged with the backend."""

    data: dict[str, Any] = Field(default_factory=dict)
    last_sync: datetime | None = None


class PushResponse(BaseModel):
    """Backend answer to an upload."""

    success: bool = True
    message: str = ""
    last_sync: datetime | None = None


class HttpRemoteBackend:
    """RemoteBackend over HTTP using httpx.

    The client is created lazily and reused across calls; close() or the
    async context manager releases it.

    Example:
        >>> async with HttpRemoteBackend("https://sync.example.com", api_token="t") as backend:
        ...     result = await backend.pull("UL-4F2A9C")
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Backend base URL
            api_token: Bearer token identifying the session server-side
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests, proxies)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._api_token = api_token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpRemoteBackend:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _path(self, tenant_id: str) -> str:
        return f"/v1/tenants/{tenant_id}/snapshot"

    async def _request(self, method: str, tenant_id: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._get_client().request(method, self._path(tenant_id), **kwargs)
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"{method} snapshot timed out: {e}") from e
        except httpx.TransportError as e:
            raise BackendTransportError(f"{method} snapshot failed: {e}") from e

        if response.status_code in _RETRYABLE_STATUS or response.status_code >= 500:
            raise BackendTransportError(
                f"{method} snapshot returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _rejection_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("message") or f"HTTP {response.status_code}")
        return f"HTTP {response.status_code}"

    async def push(self, tenant_id: str, snapshot: Snapshot) -> PushResult:
        response = await self._request("PUT", tenant_id, json={"data": snapshot.to_dict()})

        if response.is_success:
            try:
                body = PushResponse.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                raise BackendTransportError(f"Malformed push response: {e}") from e
            return PushResult(
                success=body.success,
                message=body.message,
                remote_last_sync=body.last_sync,
            )

        message = self._rejection_message(response)
        logger.warning(
            "Backend rejected push",
            extra={"tenant_id": tenant_id, "status_code": response.status_code},
        )
        return PushResult(success=False, message=message, retryable=False)

    async def pull(self, tenant_id: str) -> PullResult:
        response = await self._request("GET", tenant_id)

        if response.status_code == 404:
            return PullResult(success=True, message="No remote data")

        if response.is_success:
            try:
                envelope = SnapshotEnvelope.model_validate(response.json())
                snapshot = Snapshot.from_dict(envelope.data)
            except (ValueError, TypeError, ValidationError) as e:
                raise BackendTransportError(f"Malformed pull response: {e}") from e
            return PullResult(
                success=True,
                snapshot=snapshot,
                remote_last_sync=envelope.last_sync,
            )

        message = self._rejection_message(response)
        logger.warning(
            "Backend rejected pull",
            extra={"tenant_id": tenant_id, "status_code": response.status_code},
        )
        return PullResult(success=False, message=message, retryable=False)
