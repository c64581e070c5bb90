"""
Base protocol and types for the remote sync backend.

This module defines the RemoteBackend protocol the orchestrator depends
on, along with its result types and errors.

Failure model:
    - Transport failures (unreachable, timeout, server error) are raised
      as BackendTransportError and retried by the orchestrator
    - A well-formed request the backend declines comes back as a result
      with success=False; retryable=False marks an explicit rejection
      (unknown or unauthorized tenant) that must not be retried

Invariants:
    - push()/pull() operate on whole snapshots, never single records
    - Timestamps are timezone-aware UTC datetimes

How to change safely:
    - Protocol changes require updating all implementations
    - Add result fields with defaults only
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..store import Snapshot

if TYPE_CHECKING:
    from ..config import BackendConfig

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class BackendError(Exception):
    """Base exception for remote backend operations."""

    pass


class BackendTransportError(BackendError):
    """Backend unreachable or answered with a server-side failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendTimeoutError(BackendTransportError):
    """Backend request timed out."""

    pass


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Normalize a backend timestamp.

    Accepts aware or naive datetimes (naive is taken as UTC), ISO-8601
    strings (a trailing "Z" is allowed) and Unix milliseconds.

    Returns:
        Aware UTC datetime, or None for a missing value

    Raises:
        ValueError: If the value cannot be interpreted
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class PushResult:
    """Result of uploading a snapshot.

    Attributes:
        success: Whether the backend stored the snapshot
        message: Backend message
        remote_last_sync: Timestamp the backend recorded for this upload
        retryable: False when the backend explicitly rejected the request
    """

    success: bool
    message: str = ""
    remote_last_sync: datetime | None = None
    retryable: bool = True


@dataclass
class PullResult:
    """Result of downloading a snapshot.

    Attributes:
        success: Whether the request was served
        snapshot: Remote snapshot, None when the tenant has no remote data
        remote_last_sync: When the remote snapshot was last written
        message: Backend message
        retryable: False when the backend explicitly rejected the request
    """

    success: bool
    snapshot: Snapshot | None = None
    remote_last_sync: datetime | None = None
    message: str = ""
    retryable: bool = True

    @property
    def has_data(self) -> bool:
        return self.success and self.snapshot is not None


@runtime_checkable
class RemoteBackend(Protocol):
    """Protocol for remote sync backends.

    The backend is an external collaborator. It must reject requests
    whose tenant id does not match the authenticated session, so tenant
    isolation is enforced on both sides.

    Example:
        >>> backend = HttpRemoteBackend("https://sync.example.com", api_token="...")
        >>> result = await backend.push("UL-4F2A9C", snapshot)
        >>> result = await backend.pull("UL-4F2A9C")
        >>> if result.has_data:
        ...     print(result.snapshot.record_count, result.remote_last_sync)
    """

    @abstractmethod
    async def push(self, tenant_id: str, snapshot: Snapshot) -> PushResult:
        """Upload a tenant's full snapshot.

        Raises:
            BackendTransportError: If the backend cannot be reached
            BackendTimeoutError: If the request timed out
        """
        ...

    @abstractmethod
    async def pull(self, tenant_id: str) -> PullResult:
        """Download a tenant's snapshot.

        Raises:
            BackendTransportError: If the backend cannot be reached
            BackendTimeoutError: If the request timed out
        """
        ...


def create_remote_backend(config: BackendConfig) -> RemoteBackend:
    """Factory function to create the remote backend from configuration.

    Args:
        config: Backend configuration

    Returns:
        HTTP backend client
    """
    from .http import HttpRemoteBackend

    return HttpRemoteBackend(
        base_url=config.base_url,
        api_token=config.api_token,
        timeout_seconds=config.timeout_seconds,
    )
