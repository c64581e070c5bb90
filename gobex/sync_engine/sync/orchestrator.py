"""
Sync orchestrator for the Gobex sync engine.

The orchestrator reconciles a tenant's local snapshot with the remote
backend:
1. Upload phase: read the local snapshot once, push it (bounded retries)
2. Download phase: pull the remote snapshot (bounded retries) and
   overwrite local data when the remote copy is newer (last-write-wins
   at snapshot granularity)
3. Stamp last_sync on success

Attempts come from four triggers that share one code path and one busy
guard: the periodic timer, manual_sync(), the debounced schedule_sync()
after local mutations, and reconnection after an offline period.

States per tenant:
    Idle -> Syncing -> Idle, with the whole engine Suspended while offline

Invariants:
    - At most one attempt in flight per tenant; a concurrent request gets
      a "skipped" result and never queues
    - Upload always happens before download within an attempt
    - While offline no push/pull is issued, even when the timer fires
    - The owner partition (tenant_id None) is never synchronized
    - Public operations return a SyncResult and never raise, except
      start_auto_sync() on a malformed tenant id
    - stop_auto_sync() never cancels an attempt already in flight

How to change safely:
    - The busy flag must be set with no await between check and set
    - Keep retry delays fixed; tests measure the pause between attempts
    - Timestamps stay aware UTC; None compares as the epoch
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..backend import EPOCH, PullResult, RemoteBackend, parse_timestamp, utcnow
from ..config import SyncConfig
from ..store import LocalStore, StoreError
from ..tenant import InvalidTenantError, validate_tenant_id
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    """Kind of result of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    INVALID_TENANT = "invalid_tenant"
    STORE_ERROR = "store_error"


@dataclass
class SyncResult:
    """Result of a sync operation, returned to the UI.

    Attributes:
        success: True only when every phase of the operation succeeded
        message: Human-readable outcome
        timestamp: ISO-8601 instant the result was produced
        record_count: Records uploaded or restored, when known
        outcome: Distinguishes partial, skipped and error results
        tenant_id: Tenant the operation was requested for
    """

    success: bool
    message: str
    timestamp: str
    record_count: int | None = None
    outcome: SyncOutcome = SyncOutcome.SUCCESS
    tenant_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp,
            "outcome": self.outcome.value,
        }
        if self.record_count is not None:
            data["recordCount"] = self.record_count
        return data


@dataclass
class SyncState:
    """Per-tenant sync bookkeeping.

    Attributes:
        tenant_id: Tenant identifier
        syncing: Busy flag, True while an attempt is in flight
        last_sync: Last successful reconciliation, persisted locally
        last_attempt: When the last attempt started
        status: success, error, pending, or None before any attempt
        message: Message of the last result
    """

    tenant_id: str
    syncing: bool = False
    last_sync: datetime | None = None
    last_attempt: datetime | None = None
    status: str | None = None
    message: str = ""
    loaded: bool = False


class SyncOrchestrator:
    """Drives upload/download reconciliation for the active tenant.

    Thread safety:
        Single event loop only. Attempts interleave at backend I/O and
        retry pauses; the per-tenant busy flag keeps them from overlapping.

    Example:
        >>> orchestrator = SyncOrchestrator(store, backend, SyncConfig())
        >>> await orchestrator.force_download_from_cloud("UL-4F2A9C")
        >>> await orchestrator.start_auto_sync("UL-4F2A9C")
        >>> result = await orchestrator.manual_sync("UL-4F2A9C")
        >>> await orchestrator.stop_auto_sync()
    """

    def __init__(
        self,
        store: LocalStore,
        backend: RemoteBackend,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Local store holding tenant snapshots
            backend: Remote backend client
            config: Interval, retry and debounce settings
            clock: Source of the current UTC instant
        """
        self.store = store
        self.backend = backend
        self.config = config or SyncConfig()
        self.policy = RetryPolicy(
            retry_count=self.config.retry_count,
            retry_delay_seconds=self.config.retry_delay_seconds,
        )
        self.clock = clock

        self._online = True
        self._active_tenant: str | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._attempt_tasks: set[asyncio.Task[SyncResult]] = set()
        self._states: dict[str, SyncState] = {}

        self._attempt_count = 0
        self._success_count = 0
        self._partial_count = 0
        self._failure_count = 0
        self._skipped_count = 0

    # ------------------------------------------------------------------
    # Auto sync lifecycle
    # ------------------------------------------------------------------

    @property
    def active_tenant(self) -> str | None:
        return self._active_tenant

    @property
    def is_active(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    async def start_auto_sync(self, tenant_id: str | None) -> None:
        """Register a tenant, sync it now, then every interval_seconds.

        Any previous tenant's timer is stopped first. For the owner
        partition only the previous timer is stopped.

        Raises:
            InvalidTenantError: If the tenant id is malformed
        """
        validate_tenant_id(tenant_id)
        await self.stop_auto_sync()

        if tenant_id is None:
            logger.info("Owner session, automatic sync disabled")
            return

        self._active_tenant = tenant_id
        self._timer_task = asyncio.create_task(self._timer_loop(tenant_id))
        logger.info(
            "Automatic sync started",
            extra={"tenant_id": tenant_id, "interval_seconds": self.config.interval_seconds},
        )

    async def stop_auto_sync(self) -> None:
        """Cancel the timer and forget the active tenant. Idempotent.

        An attempt already in flight runs to completion.
        """
        tenant_id = self._active_tenant
        self._active_tenant = None

        for task in (self._timer_task, self._debounce_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer_task = None
        self._debounce_task = None

        if tenant_id is not None:
            logger.info("Automatic sync stopped", extra={"tenant_id": tenant_id})

    async def _timer_loop(self, tenant_id: str) -> None:
        while self._active_tenant == tenant_id:
            if self._online:
                self._spawn_attempt(tenant_id)
            else:
                logger.debug("Offline, periodic sync skipped", extra={"tenant_id": tenant_id})
            await asyncio.sleep(self.config.interval_seconds)

    def _spawn_attempt(self, tenant_id: str) -> asyncio.Task[SyncResult]:
        # Attempts run as their own tasks so cancelling a timer never
        # interrupts one midway
        task = asyncio.create_task(self.manual_sync(tenant_id))
        self._attempt_tasks.add(task)
        task.add_done_callback(self._attempt_tasks.discard)
        return task

    def schedule_sync(self, tenant_id: str | None) -> None:
        """Request a sync after local mutations, debounced.

        A burst of calls within debounce_seconds results in a single
        attempt; each call restarts the window. Ignored for the owner
        partition and while offline (reconnection syncs anyway).

        Raises:
            InvalidTenantError: If the tenant id is malformed
        """
        validate_tenant_id(tenant_id)
        if tenant_id is None:
            return
        if not self._online:
            logger.debug("Offline, mutation sync deferred", extra={"tenant_id": tenant_id})
            return

        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced(tenant_id))

    async def _debounced(self, tenant_id: str) -> None:
        await asyncio.sleep(self.config.debounce_seconds)
        self._spawn_attempt(tenant_id)

    async def wait_idle(self) -> None:
        """Wait until no debounce is pending and no attempt is in flight."""
        while True:
            pending: list[asyncio.Task[Any]] = list(self._attempt_tasks)
            if self._debounce_task is not None and not self._debounce_task.done():
                pending.append(self._debounce_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Stop the timer and let in-flight attempts finish."""
        await self.stop_auto_sync()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Record a network transition.

        Going offline suspends new attempts; in-flight attempts finish or
        fail on their own. Coming back online with a registered tenant
        triggers exactly one immediate attempt.
        """
        if online == self._online:
            return
        self._online = online

        if not online:
            logger.warning("Network offline, sync suspended")
            return

        logger.info("Network online, sync resumed", extra={"tenant_id": self._active_tenant})
        if self._active_tenant is not None:
            self._spawn_attempt(self._active_tenant)

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def manual_sync(self, tenant_id: str | None) -> SyncResult:
        """Run one upload-then-download attempt now.

        Returns:
            SyncResult; outcome "partial" when exactly one phase failed
        """
        return await self._guarded(tenant_id, "sync", self._sync_both)

    async def force_download_from_cloud(self, tenant_id: str | None) -> SyncResult:
        """Hydrate local data from the backend, bypassing last-write-wins.

        Used right after login. Performs only the download phase,
        overwrites local data whenever remote data exists, and stamps
        last_sync = now after any successful pull.
        """
        return await self._guarded(tenant_id, "force_download", self._download_forced)

    async def upload_only(self, tenant_id: str | None) -> SyncResult:
        """Push the local snapshot without downloading."""
        return await self._guarded(tenant_id, "upload", self._upload_only)

    async def get_last_sync_time(self, tenant_id: str | None) -> datetime | None:
        """Last successful sync instant of a tenant, or None.

        Returns None for the owner partition and malformed ids.
        """
        try:
            validate_tenant_id(tenant_id)
        except InvalidTenantError:
            return None
        if tenant_id is None:
            return None
        state = self._state(tenant_id)
        try:
            await self._load_state(tenant_id, state)
        except StoreError as e:
            logger.error(f"Cannot read sync state: {e}", extra={"tenant_id": tenant_id})
        return state.last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Status of the active tenant for a status indicator."""
        tenant_id = self._active_tenant
        state = self._states.get(tenant_id) if tenant_id else None
        return {
            "is_active": self.is_active,
            "is_online": self._online,
            "tenant_id": tenant_id,
            "last_sync": state.last_sync.isoformat() if state and state.last_sync else None,
            "last_attempt": (
                state.last_attempt.isoformat() if state and state.last_attempt else None
            ),
            "status": state.status if state else None,
            "message": state.message if state else "",
        }

    @property
    def stats(self) -> dict[str, Any]:
        """Get orchestrator statistics."""
        return {
            "active_tenant": self._active_tenant,
            "online": self._online,
            "attempts": self._attempt_count,
            "successes": self._success_count,
            "partials": self._partial_count,
            "failures": self._failure_count,
            "skipped": self._skipped_count,
            "in_flight": sum(1 for s in self._states.values() if s.syncing),
        }

    # ------------------------------------------------------------------
    # Attempt plumbing
    # ------------------------------------------------------------------

    def _state(self, tenant_id: str) -> SyncState:
        state = self._states.get(tenant_id)
        if state is None:
            state = SyncState(tenant_id=tenant_id)
            self._states[tenant_id] = state
        return state

    def _result(
        self,
        success: bool,
        message: str,
        outcome: SyncOutcome,
        tenant_id: str | None = None,
        record_count: int | None = None,
    ) -> SyncResult:
        return SyncResult(
            success=success,
            message=message,
            timestamp=self.clock().isoformat(),
            record_count=record_count,
            outcome=outcome,
            tenant_id=tenant_id,
        )

    def _skip(self, tenant_id: str | None, message: str) -> SyncResult:
        self._skipped_count += 1
        logger.debug(f"Sync skipped: {message}", extra={"tenant_id": tenant_id})
        return self._result(False, message, SyncOutcome.SKIPPED, tenant_id)

    async def _guarded(
        self,
        tenant_id: str | None,
        operation: str,
        body: Callable[[str, SyncState], Awaitable[SyncResult]],
    ) -> SyncResult:
        try:
            validate_tenant_id(tenant_id)
        except InvalidTenantError as e:
            logger.error(f"Refusing {operation}: {e}")
            return self._result(False, str(e), SyncOutcome.INVALID_TENANT)

        if tenant_id is None:
            return self._skip(None, "Owner partition is not synchronized")
        if not self._online:
            return self._skip(tenant_id, "Offline: sync suspended until the network returns")

        state = self._state(tenant_id)
        if state.syncing:
            return self._skip(tenant_id, "Sync already in progress")

        state.syncing = True
        state.status = "pending"
        state.last_attempt = self.clock()
        self._attempt_count += 1
        logger.info(f"Starting {operation}", extra={"tenant_id": tenant_id})

        try:
            await self._load_state(tenant_id, state)
            result = await body(tenant_id, state)
        except StoreError as e:
            logger.error(f"{operation} aborted, local store error: {e}", extra={"tenant_id": tenant_id})
            result = self._result(
                False, f"Local store error: {e}", SyncOutcome.STORE_ERROR, tenant_id
            )
        except Exception as e:
            logger.error(f"{operation} failed unexpectedly: {e}", exc_info=True)
            result = self._result(False, f"Sync error: {e}", SyncOutcome.FAILED, tenant_id)
        finally:
            state.syncing = False

        state.status = "success" if result.success else "error"
        state.message = result.message
        if result.outcome == SyncOutcome.SUCCESS:
            self._success_count += 1
        elif result.outcome == SyncOutcome.PARTIAL:
            self._partial_count += 1
        else:
            self._failure_count += 1

        logger.info(
            f"Finished {operation}: {result.message}",
            extra={
                "tenant_id": tenant_id,
                "outcome": result.outcome.value,
                "record_count": result.record_count,
            },
        )
        return result

    async def _load_state(self, tenant_id: str, state: SyncState) -> None:
        if state.loaded:
            return
        persisted = await self.store.get_sync_state(tenant_id)
        try:
            state.last_sync = parse_timestamp(persisted.get("last_sync"))
        except ValueError:
            logger.warning("Ignoring unreadable last_sync", extra={"tenant_id": tenant_id})
            state.last_sync = None
        state.loaded = True

    async def _stamp(self, tenant_id: str, state: SyncState, when: datetime) -> None:
        state.last_sync = when
        await self.store.put_sync_state(tenant_id, {"last_sync": when.isoformat()})

    async def _upload(self, tenant_id: str, state: SyncState) -> tuple[bool, int, str | None]:
        snapshot = await self.store.read_snapshot(tenant_id)
        outcome = await run_with_retry(
            "upload",
            lambda: self.backend.push(tenant_id, snapshot),
            self.policy,
            tenant_id,
        )
        if outcome.success and outcome.result is not None:
            # Remote now holds this snapshot as of remote_ts
            remote_ts = parse_timestamp(outcome.result.remote_last_sync)
            if remote_ts is not None:
                await self._stamp(tenant_id, state, remote_ts)
        return outcome.success, snapshot.record_count, outcome.error

    async def _apply_remote(
        self, tenant_id: str, state: SyncState, pulled: PullResult, force: bool = False
    ) -> int | None:
        """Install a pulled snapshot when it wins; returns records restored."""
        if not pulled.has_data or pulled.snapshot is None:
            logger.info("No remote data to restore", extra={"tenant_id": tenant_id})
            return None

        remote_ts = parse_timestamp(pulled.remote_last_sync)
        local_ts = state.last_sync or EPOCH
        if not force and (remote_ts or EPOCH) <= local_ts:
            logger.debug(
                "Local data is current",
                extra={"tenant_id": tenant_id, "remote_last_sync": str(remote_ts)},
            )
            return None

        restored = await self.store.replace_snapshot(tenant_id, pulled.snapshot)
        if remote_ts is not None:
            await self._stamp(tenant_id, state, remote_ts)
        logger.info(
            "Restored remote snapshot",
            extra={"tenant_id": tenant_id, "record_count": restored, "forced": force},
        )
        return restored

    async def _sync_both(self, tenant_id: str, state: SyncState) -> SyncResult:
        uploaded, record_count, upload_error = await self._upload(tenant_id, state)

        download = await run_with_retry(
            "download", lambda: self.backend.pull(tenant_id), self.policy, tenant_id
        )
        restored = None
        if download.success and download.result is not None:
            restored = await self._apply_remote(tenant_id, state, download.result)

        if uploaded and download.success:
            await self._stamp(tenant_id, state, self.clock())
            if restored is not None:
                message = f"Synchronized, {restored} records restored from the cloud"
                record_count = restored
            else:
                message = f"Synchronized, {record_count} records uploaded"
            return self._result(True, message, SyncOutcome.SUCCESS, tenant_id, record_count)

        if download.success:
            return self._result(
                False,
                f"Upload failed ({upload_error}), download succeeded",
                SyncOutcome.PARTIAL,
                tenant_id,
                restored,
            )
        if uploaded:
            return self._result(
                False,
                f"Upload succeeded, download failed ({download.error})",
                SyncOutcome.PARTIAL,
                tenant_id,
                record_count,
            )
        return self._result(
            False,
            f"Sync failed: upload ({upload_error}), download ({download.error})",
            SyncOutcome.FAILED,
            tenant_id,
        )

    async def _download_forced(self, tenant_id: str, state: SyncState) -> SyncResult:
        download = await run_with_retry(
            "download", lambda: self.backend.pull(tenant_id), self.policy, tenant_id
        )
        if not download.success or download.result is None:
            return self._result(
                False, f"Download failed ({download.error})", SyncOutcome.FAILED, tenant_id
            )

        restored = await self._apply_remote(tenant_id, state, download.result, force=True)
        await self._stamp(tenant_id, state, self.clock())
        if restored is None:
            return self._result(True, "No cloud data to restore", SyncOutcome.SUCCESS, tenant_id, 0)
        return self._result(
            True,
            f"{restored} records restored from the cloud",
            SyncOutcome.SUCCESS,
            tenant_id,
            restored,
        )

    async def _upload_only(self, tenant_id: str, state: SyncState) -> SyncResult:
        uploaded, record_count, error = await self._upload(tenant_id, state)
        if not uploaded:
            return self._result(False, f"Upload failed ({error})", SyncOutcome.FAILED, tenant_id)
        return self._result(
            True,
            f"{record_count} records uploaded",
            SyncOutcome.SUCCESS,
            tenant_id,
            record_count,
        )
