"""
Gobex sync engine - session wiring and entry point.

This module assembles the engine components for one application session:
- Tenant context and tenant-scoped local store
- License gate and registry (owner partition)
- Remote backend client and sync orchestrator
- Connectivity monitor feeding online/offline transitions

Login flow:
    gate.login -> context.set_tenant -> force_download_from_cloud
    -> start_auto_sync

Usage:
    GOBEX_SESSION_USERNAME=gerant GOBEX_SESSION_PASSWORD=... \\
        python -m gobex.sync_engine.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The tenant context changes only while no timer is armed
    - Logout never deletes local data
    - Before login and after logout session.data refuses every call
    - A failed hydration does not block login; the next attempt retries
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Callable
from datetime import date
from typing import Any

import json_log_formatter

from .backend import RemoteBackend, create_remote_backend
from .config import EngineConfig
from .license import LicenseGate, LicenseRegistry, LoginResult
from .store import LocalStore, TenantScopedStore
from .sync import ConnectivityMonitor, SyncOrchestrator
from .tenant import TenantContext

logger = logging.getLogger(__name__)


def setup_logging(config: EngineConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class SessionError(Exception):
    """Operation not allowed in the current session."""

    pass


class SyncSession:
    """One application session over the sync engine.

    Attributes:
        config: Engine configuration
        store: Local store shared by every partition
        context: Active tenant
        data: Tenant-scoped store for application modules
        registry: Owner-side user lots and licenses
        gate: License gate
        orchestrator: Sync orchestrator
        monitor: Connectivity monitor (None when disabled)

    Example:
        >>> session = SyncSession(EngineConfig.from_env())
        >>> result = await session.login("gerant", "s3cret", "manager")
        >>> await session.data.put("sales", {"id": "S1", "total": 1500})
        >>> await session.logout()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        backend: RemoteBackend | None = None,
        store: LocalStore | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or LocalStore(
            data_dir=self.config.storage.data_dir,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )
        self.backend = backend or create_remote_backend(self.config.backend)
        self.context = TenantContext()

        self.registry = LicenseRegistry(
            self.store, reserved_usernames={self.config.owner.username}
        )
        self.gate = LicenseGate(
            self.registry,
            owner_username=self.config.owner.username,
            owner_password=self.config.owner.password,
            today=today,
        )
        self.orchestrator = SyncOrchestrator(self.store, self.backend, self.config.sync)

        self.data = TenantScopedStore(self.store, self.context)
        self.data.add_listener(self._on_mutation)

        self.monitor: ConnectivityMonitor | None = None
        if self.config.connectivity.enabled:
            self.monitor = ConnectivityMonitor(
                probe_url=self.config.connectivity.probe_url,
                interval_seconds=self.config.connectivity.probe_interval_seconds,
                timeout_seconds=self.config.connectivity.probe_timeout_seconds,
            )
            self.monitor.add_callback(self.orchestrator.set_online)

        self.current: LoginResult | None = None

    @property
    def is_logged_in(self) -> bool:
        return self.current is not None

    def _on_mutation(self, tenant_id: str | None, collection: str) -> None:
        self.orchestrator.schedule_sync(tenant_id)

    async def login(self, username: str, password: str, role: str | None = None) -> LoginResult:
        """Authenticate, switch partitions, hydrate and start automatic sync.

        Returns:
            The gate's LoginResult; on failure the session is unchanged
        """
        result = await self.gate.login(username, password, role)
        if not result.success:
            return result

        await self.orchestrator.stop_auto_sync()
        self.context.set_tenant(result.tenant_id)

        if result.tenant_id is not None:
            hydration = await self.orchestrator.force_download_from_cloud(result.tenant_id)
            if not hydration.success:
                logger.warning(
                    f"Initial download failed: {hydration.message}",
                    extra={"tenant_id": result.tenant_id},
                )

        await self.orchestrator.start_auto_sync(result.tenant_id)
        if self.monitor is not None and not self.monitor.is_running:
            await self.monitor.start()

        self.current = result
        return result

    async def logout(self) -> None:
        """Stop sync and leave every partition. Local data is kept."""
        await self.orchestrator.stop_auto_sync()
        self.context.clear()
        self.current = None
        logger.info("Logged out")

    async def deprovision_tenant(self, tenant_id: str) -> int:
        """Delete a tenant's local namespace. Owner session only.

        Returns:
            Number of records removed

        Raises:
            SessionError: If the session is not the owner's
        """
        if self.current is None or not self.current.is_owner:
            raise SessionError("Only the owner can deprovision a tenant")
        return await self.store.clear_tenant(tenant_id)

    def status(self) -> dict[str, Any]:
        """Session and sync status for display."""
        return {
            "logged_in": self.is_logged_in,
            "tenant_id": self.context.get_tenant() if self.context.is_set else None,
            "role": self.current.role.value if self.current and self.current.role else None,
            "sync": self.orchestrator.get_sync_status(),
        }

    async def close(self) -> None:
        """Stop background work and release the backend client."""
        if self.monitor is not None:
            await self.monitor.stop()
        await self.orchestrator.close()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()


async def run_agent(session: SyncSession, username: str, password: str, role: str | None) -> int:
    """Log in and keep syncing until cancelled.

    Returns:
        Process exit code
    """
    result = await session.login(username, password, role)
    if not result.success:
        logger.error(f"Login refused: {result.message}")
        return 1

    logger.info("Sync agent running", extra={"tenant_id": result.tenant_id})
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Sync agent cancelled")
    finally:
        await session.logout()
        await session.close()
    return 0


def main() -> None:
    """Main entry point."""
    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    username = os.getenv("GOBEX_SESSION_USERNAME")
    password = os.getenv("GOBEX_SESSION_PASSWORD")
    role = os.getenv("GOBEX_SESSION_ROLE")
    if not username or not password:
        print("GOBEX_SESSION_USERNAME and GOBEX_SESSION_PASSWORD are required", file=sys.stderr)
        sys.exit(1)

    session = SyncSession(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    agent = loop.create_task(run_agent(session, username, password, role))

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        agent.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        exit_code = loop.run_until_complete(agent)
    finally:
        loop.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
