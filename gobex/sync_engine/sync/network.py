"""
Connectivity monitor.

Periodically probes the sync backend over HTTP and reports online/offline
transitions to registered callbacks (the orchestrator's set_online).

Any HTTP response counts as online, whatever its status: the network is
up even when the backend refuses the probe. Connection failures and
timeouts count as offline.

Invariants:
    - Callbacks fire only on transitions, never on repeated states
    - A failing callback is logged and does not stop the monitor
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityMonitor:
    """Background prober feeding network transitions to callbacks.

    Example:
        >>> monitor = ConnectivityMonitor("http://localhost:8090/health")
        >>> monitor.add_callback(orchestrator.set_online)
        >>> await monitor.start()
    """

    def __init__(
        self,
        probe_url: str,
        interval_seconds: float = 30.0,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.probe_url = probe_url
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._callbacks: list[ConnectivityCallback] = []
        self._online: bool | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._probe_count = 0
        self._transition_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def online(self) -> bool | None:
        """Last observed state, None before the first probe."""
        return self._online

    def add_callback(self, callback: ConnectivityCallback) -> None:
        self._callbacks.append(callback)

    async def probe(self) -> bool:
        """Probe once and report a transition if the state changed."""
        self._probe_count += 1
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                await client.get(self.probe_url)
            online = True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        if online != self._online:
            previous = self._online
            self._online = online
            # Online is the initial assumption, not a transition
            if previous is not None or not online:
                self._notify(online)
        return online

    def _notify(self, online: bool) -> None:
        self._transition_count += 1
        logger.info("Connectivity changed", extra={"online": online})
        for callback in self._callbacks:
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}", exc_info=True)

    async def start(self) -> None:
        """Start the probe loop in a background task."""
        if self._running:
            logger.warning("Connectivity monitor already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Connectivity monitor started",
            extra={"probe_url": self.probe_url, "interval_seconds": self.interval_seconds},
        )

    async def _run(self) -> None:
        while self._running:
            await self.probe()
            await asyncio.sleep(self.interval_seconds)

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connectivity monitor stopped")

    @property
    def stats(self) -> dict[str, Any]:
        """Get monitor statistics."""
        return {
            "running": self._running,
            "online": self._online,
            "probes": self._probe_count,
            "transitions": self._transition_count,
        }
