"""
In-memory remote backend for testing.

This module provides a simple in-memory sync backend for:
- Unit tests
- Integration tests
- Local development without a server

Invariants:
    - All data is lost on process exit
    - Stores deep copies, callers cannot mutate stored snapshots
    - Same result/exception semantics as the HTTP backend

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the RemoteBackend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..store import Snapshot
from .base import (
    BackendTransportError,
    PullResult,
    PushResult,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class StoredSnapshot:
    """A tenant snapshot held by the in-memory backend."""

    data: dict[str, Any]
    last_sync: datetime


@dataclass
class CallLog:
    """Calls received by the backend, for assertions."""

    push: list[float] = field(default_factory=list)
    pull: list[float] = field(default_factory=list)


class InMemoryRemoteBackend:
    """In-memory implementation of RemoteBackend for testing.

    Attributes:
        latency: Seconds each call awaits before answering, to open a
            suspension point like real I/O
        always_fail: Every call raises BackendTransportError
        rejected_tenants: Tenants answered with a non-retryable rejection

    Example:
        >>> backend = InMemoryRemoteBackend()
        >>> backend.seed("T1", {"products": [{"id": "P1"}]}, last_sync=later)
        >>> backend.fail_next_pushes(2)
        >>> await backend.push("T1", snapshot)  # raises BackendTransportError
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.always_fail = False
        self.rejected_tenants: set[str] = set()
        self.calls = CallLog()
        self._data: dict[str, StoredSnapshot] = {}
        self._push_failures = 0
        self._pull_failures = 0

    @property
    def push_count(self) -> int:
        return len(self.calls.push)

    @property
    def pull_count(self) -> int:
        return len(self.calls.pull)

    def fail_next_pushes(self, count: int) -> None:
        """Make the next `count` pushes raise a transport error."""
        self._push_failures = count

    def fail_next_pulls(self, count: int) -> None:
        """Make the next `count` pulls raise a transport error."""
        self._pull_failures = count

    def seed(
        self,
        tenant_id: str,
        data: dict[str, Any] | Snapshot,
        last_sync: datetime | str | int | None = None,
    ) -> None:
        """Install a remote snapshot without going through push()."""
        if isinstance(data, Snapshot):
            data = data.to_dict()
        self._data[tenant_id] = StoredSnapshot(
            data=copy.deepcopy(data),
            last_sync=parse_timestamp(last_sync) or utcnow(),
        )

    def get_snapshot(self, tenant_id: str) -> Snapshot | None:
        stored = self._data.get(tenant_id)
        return Snapshot.from_dict(copy.deepcopy(stored.data)) if stored else None

    def get_last_sync(self, tenant_id: str) -> datetime | None:
        stored = self._data.get(tenant_id)
        return stored.last_sync if stored else None

    def reset_calls(self) -> None:
        self.calls = CallLog()

    async def push(self, tenant_id: str, snapshot: Snapshot) -> PushResult:
        self.calls.push.append(time.monotonic())
        await self._simulate_io()

        if self.always_fail or self._push_failures > 0:
            self._push_failures = max(0, self._push_failures - 1)
            raise BackendTransportError("Simulated network failure on push")

        if tenant_id in self.rejected_tenants:
            return PushResult(
                success=False, message=f"Unknown tenant: {tenant_id}", retryable=False
            )

        now = utcnow()
        self._data[tenant_id] = StoredSnapshot(data=copy.deepcopy(snapshot.to_dict()), last_sync=now)
        logger.debug("InMemoryRemoteBackend stored snapshot", extra={"tenant_id": tenant_id})
        return PushResult(success=True, message="Snapshot stored", remote_last_sync=now)

    async def pull(self, tenant_id: str) -> PullResult:
        self.calls.pull.append(time.monotonic())
        await self._simulate_io()

        if self.always_fail or self._pull_failures > 0:
            self._pull_failures = max(0, self._pull_failures - 1)
            raise BackendTransportError("Simulated network failure on pull")

        if tenant_id in self.rejected_tenants:
            return PullResult(
                success=False, message=f"Unknown tenant: {tenant_id}", retryable=False
            )

        stored = self._data.get(tenant_id)
        if stored is None:
            return PullResult(success=True, message="No remote data")

        return PullResult(
            success=True,
            snapshot=Snapshot.from_dict(copy.deepcopy(stored.data)),
            remote_last_sync=stored.last_sync,
        )

    async def _simulate_io(self) -> None:
        # Always yield so concurrent callers interleave as with real I/O
        await asyncio.sleep(self.latency)
