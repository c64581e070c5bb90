"""
Unit tests for the sync orchestrator.

Tests cover:
- Upload-then-download attempts and their results
- Last-write-wins at snapshot granularity
- At-most-one attempt in flight per tenant
- Retry bound with pauses
- Offline suspension and reconnect catch-up
- Timer lifecycle
- Forced download after login
- Owner partition and malformed tenant ids
- Debounced mutation-triggered sync
"""

import asyncio
import tempfile
from datetime import datetime, timezone

import pytest

from gobex.sync_engine.backend import InMemoryRemoteBackend
from gobex.sync_engine.config import SyncConfig
from gobex.sync_engine.store import LocalStore, Snapshot, StoreUnavailableError
from gobex.sync_engine.sync import SyncOrchestrator, SyncOutcome
from gobex.sync_engine.tenant import InvalidTenantError

EARLY = datetime(2025, 1, 1, tzinfo=timezone.utc)
LATER = datetime(2025, 6, 1, tzinfo=timezone.utc)


def fast_config(**overrides):
    values = {
        "interval_seconds": 60.0,
        "retry_count": 3,
        "retry_delay_seconds": 0.01,
        "debounce_seconds": 0.05,
    }
    values.update(overrides)
    return SyncConfig(**values)


class OrchestratorTestBase:
    """Shared fixtures."""

    @pytest.fixture
    def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield LocalStore(tmpdir, wal_mode=False)

    @pytest.fixture
    def backend(self):
        return InMemoryRemoteBackend()

    @pytest.fixture
    def orchestrator(self, store, backend):
        return SyncOrchestrator(store, backend, fast_config())


class TestSyncAttempt(OrchestratorTestBase):
    """Tests for a single upload-then-download attempt."""

    @pytest.mark.asyncio
    async def test_manual_sync_uploads_local_snapshot(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "P1", "nom": "Flag"})

        result = await orchestrator.manual_sync("T1")

        assert result.success is True
        assert result.outcome == SyncOutcome.SUCCESS
        assert result.record_count == 1
        assert backend.push_count == 1
        assert backend.pull_count == 1
        assert backend.get_snapshot("T1").collections["products"] == [{"id": "P1", "nom": "Flag"}]

    @pytest.mark.asyncio
    async def test_upload_happens_before_download(self, orchestrator, backend):
        await orchestrator.manual_sync("T1")

        assert backend.calls.push[0] <= backend.calls.pull[0]

    @pytest.mark.asyncio
    async def test_success_stamps_last_sync(self, store, backend):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        orchestrator = SyncOrchestrator(store, backend, fast_config(), clock=lambda: now)

        result = await orchestrator.manual_sync("T1")

        assert await orchestrator.get_last_sync_time("T1") == now
        assert result.timestamp == now.isoformat()

    @pytest.mark.asyncio
    async def test_last_sync_is_persisted_locally(self, orchestrator, store, backend):
        await orchestrator.manual_sync("T1")
        stamped = await orchestrator.get_last_sync_time("T1")

        fresh = SyncOrchestrator(store, backend, fast_config())

        assert await fresh.get_last_sync_time("T1") == stamped

    @pytest.mark.asyncio
    async def test_last_sync_unknown_before_first_sync(self, orchestrator):
        assert await orchestrator.get_last_sync_time("T1") is None

    @pytest.mark.asyncio
    async def test_first_sync_without_remote_data(self, orchestrator, store):
        result = await orchestrator.manual_sync("T1")

        assert result.success is True
        assert (await store.read_snapshot("T1")).record_count == 0

    @pytest.mark.asyncio
    async def test_result_dict(self, orchestrator, store):
        await store.put("T1", "sales", {"id": "S1"})

        data = (await orchestrator.manual_sync("T1")).to_dict()

        assert data["success"] is True
        assert data["recordCount"] == 1
        assert data["outcome"] == "success"
        assert isinstance(data["timestamp"], str)

    @pytest.mark.asyncio
    async def test_store_error_is_reported(self, orchestrator, store, backend, monkeypatch):
        async def broken(tenant_id):
            raise StoreUnavailableError("disk full")

        monkeypatch.setattr(store, "read_snapshot", broken)

        result = await orchestrator.manual_sync("T1")

        assert result.success is False
        assert result.outcome == SyncOutcome.STORE_ERROR
        assert "disk full" in result.message
        assert backend.push_count == 0

        monkeypatch.undo()
        assert (await orchestrator.manual_sync("T1")).success is True


class TestLastWriteWins(OrchestratorTestBase):
    """Tests for whole-snapshot last-write-wins."""

    @pytest.mark.asyncio
    async def test_newer_remote_replaces_local(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "LOCAL"})
        await store.put_sync_state("T1", {"last_sync": EARLY.isoformat()})
        backend.seed("T1", {"products": [{"id": "P1"}], "sales": [{"id": "S1"}]}, last_sync=LATER)
        backend.fail_next_pushes(3)

        result = await orchestrator.manual_sync("T1")

        local = await store.read_snapshot("T1")
        assert local.canonical() == backend.get_snapshot("T1").canonical()
        assert result.outcome == SyncOutcome.PARTIAL
        assert result.record_count == 2
        assert await orchestrator.get_last_sync_time("T1") == LATER

    @pytest.mark.asyncio
    async def test_older_remote_leaves_local_untouched(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "LOCAL"})
        await store.put_sync_state(
            "T1", {"last_sync": datetime.fromtimestamp(0.1, tz=timezone.utc).isoformat()}
        )
        backend.seed("T1", {"products": [{"id": "REMOTE"}]}, last_sync=50)
        backend.fail_next_pushes(3)
        before = (await store.read_snapshot("T1")).canonical()

        await orchestrator.manual_sync("T1")

        assert (await store.read_snapshot("T1")).canonical() == before

    @pytest.mark.asyncio
    async def test_equal_timestamps_leave_local_untouched(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "LOCAL"})
        await store.put_sync_state("T1", {"last_sync": LATER.isoformat()})
        backend.seed("T1", {"products": [{"id": "REMOTE"}]}, last_sync=LATER)
        backend.fail_next_pushes(3)

        await orchestrator.manual_sync("T1")

        assert await store.get("T1", "products") == [{"id": "LOCAL"}]

    @pytest.mark.asyncio
    async def test_own_upload_is_not_restored(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "P1"})

        await orchestrator.manual_sync("T1")
        await store.put("T1", "products", {"id": "P2"})
        result = await orchestrator.manual_sync("T1")

        assert result.success is True
        assert [r["id"] for r in await store.get("T1", "products")] == ["P1", "P2"]
        assert len(backend.get_snapshot("T1").collections["products"]) == 2

    @pytest.mark.asyncio
    async def test_remote_without_timestamp_never_overwrites(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "LOCAL"})
        backend.seed("T1", {"products": [{"id": "REMOTE"}]})
        backend._data["T1"].last_sync = None
        backend.fail_next_pushes(3)

        await orchestrator.manual_sync("T1")

        assert await store.get("T1", "products") == [{"id": "LOCAL"}]


class TestFailures(OrchestratorTestBase):
    """Tests for retries, rejections and partial results."""

    @pytest.mark.asyncio
    async def test_always_failing_backend_is_called_exactly_n_times(self, store, backend):
        delay = 0.05
        orchestrator = SyncOrchestrator(
            store, backend, fast_config(retry_count=3, retry_delay_seconds=delay)
        )
        backend.always_fail = True

        result = await orchestrator.manual_sync("T1")

        assert result.success is False
        assert result.outcome == SyncOutcome.FAILED
        assert backend.push_count == 3
        assert backend.pull_count == 3
        pushes = backend.calls.push
        assert all(b - a >= delay * 0.8 for a, b in zip(pushes, pushes[1:]))

    @pytest.mark.asyncio
    async def test_transient_failures_recover(self, orchestrator, backend):
        backend.fail_next_pushes(2)

        result = await orchestrator.manual_sync("T1")

        assert result.success is True
        assert backend.push_count == 3

    @pytest.mark.asyncio
    async def test_partial_when_download_fails(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "P1"})
        backend.fail_next_pulls(3)

        result = await orchestrator.manual_sync("T1")

        assert result.success is False
        assert result.outcome == SyncOutcome.PARTIAL
        assert "download failed" in result.message
        assert backend.get_snapshot("T1") is not None

    @pytest.mark.asyncio
    async def test_partial_when_upload_fails(self, orchestrator, backend):
        backend.fail_next_pushes(3)

        result = await orchestrator.manual_sync("T1")

        assert result.outcome == SyncOutcome.PARTIAL
        assert "Upload failed" in result.message

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, orchestrator, backend):
        backend.rejected_tenants.add("T1")

        result = await orchestrator.manual_sync("T1")

        assert result.outcome == SyncOutcome.FAILED
        assert backend.push_count == 1
        assert backend.pull_count == 1
        assert "Unknown tenant" in result.message

    @pytest.mark.asyncio
    async def test_failure_does_not_stamp_last_sync(self, orchestrator, backend):
        backend.always_fail = True

        await orchestrator.manual_sync("T1")

        assert await orchestrator.get_last_sync_time("T1") is None
        status = orchestrator.stats
        assert status["failures"] == 1
        assert status["successes"] == 0


class TestBusyGuard(OrchestratorTestBase):
    """At most one attempt in flight per tenant."""

    @pytest.mark.asyncio
    async def test_concurrent_manual_syncs_make_one_round_trip(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        first, second = await asyncio.gather(
            orchestrator.manual_sync("T1"), orchestrator.manual_sync("T1")
        )

        outcomes = sorted([first.outcome.value, second.outcome.value])
        assert outcomes == ["skipped", "success"]
        assert backend.push_count == 1
        assert backend.pull_count == 1

    @pytest.mark.asyncio
    async def test_skipped_result_is_descriptive(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        _, second = await asyncio.gather(
            orchestrator.manual_sync("T1"), orchestrator.manual_sync("T1")
        )

        assert second.success is False
        assert "in progress" in second.message

    @pytest.mark.asyncio
    async def test_guard_is_per_tenant(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        a, b = await asyncio.gather(orchestrator.manual_sync("A"), orchestrator.manual_sync("B"))

        assert a.success and b.success
        assert backend.push_count == 2

    @pytest.mark.asyncio
    async def test_guard_released_after_attempt(self, orchestrator, backend):
        await orchestrator.manual_sync("T1")
        result = await orchestrator.manual_sync("T1")

        assert result.success is True
        assert backend.push_count == 2

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, orchestrator, backend):
        backend.always_fail = True
        await orchestrator.manual_sync("T1")
        backend.always_fail = False

        assert (await orchestrator.manual_sync("T1")).success is True

    @pytest.mark.asyncio
    async def test_force_download_shares_the_guard(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        sync, forced = await asyncio.gather(
            orchestrator.manual_sync("T1"), orchestrator.force_download_from_cloud("T1")
        )

        assert sync.success is True
        assert forced.outcome == SyncOutcome.SKIPPED


class TestConnectivity(OrchestratorTestBase):
    """Offline suspension and reconnect catch-up."""

    @pytest.mark.asyncio
    async def test_offline_manual_sync_makes_no_calls(self, orchestrator, backend):
        orchestrator.set_online(False)

        result = await orchestrator.manual_sync("T1")

        assert result.outcome == SyncOutcome.SKIPPED
        assert "Offline" in result.message
        assert backend.push_count == 0
        assert backend.pull_count == 0
        assert orchestrator.is_online() is False

    @pytest.mark.asyncio
    async def test_timer_makes_no_calls_while_offline(self, store, backend):
        orchestrator = SyncOrchestrator(store, backend, fast_config(interval_seconds=0.02))
        orchestrator.set_online(False)

        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.15)
        await orchestrator.close()

        assert backend.push_count == 0
        assert backend.pull_count == 0

    @pytest.mark.asyncio
    async def test_reconnect_triggers_exactly_one_attempt(self, orchestrator, backend):
        orchestrator.set_online(False)
        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.02)

        orchestrator.set_online(True)
        await orchestrator.wait_idle()

        assert backend.push_count == 1
        assert backend.pull_count == 1
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_reconnect_without_tenant_does_nothing(self, orchestrator, backend):
        orchestrator.set_online(False)
        orchestrator.set_online(True)
        await orchestrator.wait_idle()

        assert backend.push_count == 0

    @pytest.mark.asyncio
    async def test_repeated_online_signal_is_not_a_transition(self, orchestrator, backend):
        await orchestrator.start_auto_sync("T1")
        await orchestrator.wait_idle()
        backend.reset_calls()

        orchestrator.set_online(True)
        await orchestrator.wait_idle()

        assert backend.push_count == 0
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_in_flight_attempt_finishes_after_going_offline(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        task = asyncio.create_task(orchestrator.manual_sync("T1"))
        await asyncio.sleep(0.01)
        orchestrator.set_online(False)
        result = await task

        assert result.success is True
        assert backend.pull_count == 1


class TestAutoSync(OrchestratorTestBase):
    """Timer lifecycle."""

    @pytest.mark.asyncio
    async def test_start_syncs_immediately(self, orchestrator, backend):
        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.01)
        await orchestrator.wait_idle()

        assert backend.push_count == 1
        assert orchestrator.is_active
        assert orchestrator.active_tenant == "T1"
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_timer_repeats(self, store, backend):
        orchestrator = SyncOrchestrator(store, backend, fast_config(interval_seconds=0.05))

        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.18)
        await orchestrator.close()

        assert backend.push_count >= 2

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, orchestrator):
        await orchestrator.stop_auto_sync()
        await orchestrator.start_auto_sync("T1")
        await orchestrator.stop_auto_sync()
        await orchestrator.stop_auto_sync()

        assert orchestrator.active_tenant is None
        assert not orchestrator.is_active
        await orchestrator.wait_idle()

    @pytest.mark.asyncio
    async def test_stop_does_not_cancel_in_flight_attempt(self, store):
        backend = InMemoryRemoteBackend(latency=0.05)
        orchestrator = SyncOrchestrator(store, backend, fast_config())

        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.01)
        await orchestrator.stop_auto_sync()
        await orchestrator.wait_idle()

        assert backend.push_count == 1
        assert backend.pull_count == 1
        assert orchestrator.stats["successes"] == 1

    @pytest.mark.asyncio
    async def test_new_tenant_replaces_previous(self, orchestrator, backend):
        await orchestrator.start_auto_sync("T1")
        await orchestrator.start_auto_sync("T2")
        await asyncio.sleep(0.01)
        await orchestrator.wait_idle()

        assert orchestrator.active_tenant == "T2"
        assert backend.get_snapshot("T2") is not None
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_sync_status(self, orchestrator):
        await orchestrator.start_auto_sync("T1")
        await asyncio.sleep(0.01)
        await orchestrator.wait_idle()

        status = orchestrator.get_sync_status()

        assert status["is_active"] is True
        assert status["is_online"] is True
        assert status["tenant_id"] == "T1"
        assert status["status"] == "success"
        assert status["last_sync"] is not None
        assert status["last_attempt"] is not None
        await orchestrator.close()
        assert orchestrator.get_sync_status()["tenant_id"] is None


class TestForceDownload(OrchestratorTestBase):
    """Tests for force_download_from_cloud."""

    @pytest.mark.asyncio
    async def test_hydrates_and_stamps_now(self, store, backend):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        orchestrator = SyncOrchestrator(store, backend, fast_config(), clock=lambda: now)
        await store.put("T1", "products", {"id": "STALE"})
        await store.put_sync_state("T1", {"last_sync": "2099-01-01T00:00:00+00:00"})
        backend.seed("T1", {"products": [{"id": "P1"}]}, last_sync=EARLY)

        result = await orchestrator.force_download_from_cloud("T1")

        assert result.success is True
        assert result.record_count == 1
        assert await store.get("T1", "products") == [{"id": "P1"}]
        assert await orchestrator.get_last_sync_time("T1") == now

    @pytest.mark.asyncio
    async def test_does_not_upload(self, orchestrator, store, backend):
        await store.put("T1", "products", {"id": "LOCAL"})

        await orchestrator.force_download_from_cloud("T1")

        assert backend.push_count == 0
        assert backend.pull_count == 1

    @pytest.mark.asyncio
    async def test_no_remote_data_keeps_local(self, orchestrator, store):
        await store.put("T1", "products", {"id": "LOCAL"})

        result = await orchestrator.force_download_from_cloud("T1")

        assert result.success is True
        assert result.record_count == 0
        assert await store.get("T1", "products") == [{"id": "LOCAL"}]
        assert await orchestrator.get_last_sync_time("T1") is not None

    @pytest.mark.asyncio
    async def test_failure_reported(self, orchestrator, backend):
        backend.always_fail = True

        result = await orchestrator.force_download_from_cloud("T1")

        assert result.success is False
        assert result.outcome == SyncOutcome.FAILED
        assert backend.pull_count == 3


class TestUploadOnly(OrchestratorTestBase):
    """Tests for upload_only."""

    @pytest.mark.asyncio
    async def test_pushes_without_pulling(self, orchestrator, store, backend):
        await store.put("T1", "sales", {"id": "S1"})

        result = await orchestrator.upload_only("T1")

        assert result.success is True
        assert result.record_count == 1
        assert backend.push_count == 1
        assert backend.pull_count == 0


class TestOwnerAndInvalidTenants(OrchestratorTestBase):
    """The owner partition never syncs; malformed ids fail fast."""

    @pytest.mark.asyncio
    async def test_owner_start_is_a_no_op(self, orchestrator, backend):
        await orchestrator.start_auto_sync(None)
        await asyncio.sleep(0.01)
        await orchestrator.wait_idle()

        assert backend.push_count == 0
        assert backend.pull_count == 0
        assert not orchestrator.is_active

    @pytest.mark.asyncio
    async def test_owner_start_stops_previous_tenant(self, orchestrator):
        await orchestrator.start_auto_sync("T1")
        await orchestrator.start_auto_sync(None)

        assert orchestrator.active_tenant is None
        assert not orchestrator.is_active
        await orchestrator.wait_idle()

    @pytest.mark.asyncio
    async def test_owner_manual_sync_skipped(self, orchestrator, backend):
        sync = await orchestrator.manual_sync(None)
        forced = await orchestrator.force_download_from_cloud(None)
        uploaded = await orchestrator.upload_only(None)

        assert {sync.outcome, forced.outcome, uploaded.outcome} == {SyncOutcome.SKIPPED}
        assert backend.push_count == 0
        assert backend.pull_count == 0
        assert await orchestrator.get_last_sync_time(None) is None

    @pytest.mark.asyncio
    async def test_invalid_tenant_result(self, orchestrator, backend):
        result = await orchestrator.manual_sync("")

        assert result.success is False
        assert result.outcome == SyncOutcome.INVALID_TENANT
        assert backend.push_count == 0

    @pytest.mark.asyncio
    async def test_invalid_tenant_start_raises(self, orchestrator):
        with pytest.raises(InvalidTenantError):
            await orchestrator.start_auto_sync("bad id")


class TestDebouncedSync(OrchestratorTestBase):
    """Tests for schedule_sync."""

    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_attempt(self, orchestrator, backend):
        for _ in range(5):
            orchestrator.schedule_sync("T1")
            await asyncio.sleep(0.01)

        await orchestrator.wait_idle()

        assert backend.push_count == 1

    @pytest.mark.asyncio
    async def test_waits_for_quiet_period(self, orchestrator, backend):
        orchestrator.schedule_sync("T1")
        await asyncio.sleep(0.01)

        assert backend.push_count == 0
        await orchestrator.wait_idle()
        assert backend.push_count == 1

    @pytest.mark.asyncio
    async def test_owner_ignored(self, orchestrator, backend):
        orchestrator.schedule_sync(None)
        await orchestrator.wait_idle()

        assert backend.push_count == 0

    @pytest.mark.asyncio
    async def test_offline_ignored(self, orchestrator, backend):
        orchestrator.set_online(False)
        orchestrator.schedule_sync("T1")
        await orchestrator.wait_idle()

        assert backend.push_count == 0

    @pytest.mark.asyncio
    async def test_invalid_tenant_raises(self, orchestrator):
        with pytest.raises(InvalidTenantError):
            orchestrator.schedule_sync("")

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_debounce(self, orchestrator, backend):
        orchestrator.schedule_sync("T1")
        await orchestrator.stop_auto_sync()
        await asyncio.sleep(0.1)

        assert backend.push_count == 0
