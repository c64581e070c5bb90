"""
Sync module for the Gobex sync engine.

Reconciles local tenant snapshots with the remote backend:
- SyncOrchestrator: timer, manual, debounced and reconnect-triggered
  attempts sharing one busy guard
- run_with_retry: fixed-delay bounded retries per phase
- ConnectivityMonitor: online/offline transitions from HTTP probes
"""

from .network import ConnectivityMonitor
from .orchestrator import SyncOrchestrator, SyncOutcome, SyncResult, SyncState
from .retry import PhaseOutcome, RetryPolicy, run_with_retry

__all__ = [
    "SyncOrchestrator",
    "SyncResult",
    "SyncOutcome",
    "SyncState",
    "RetryPolicy",
    "PhaseOutcome",
    "run_with_retry",
    "ConnectivityMonitor",
]
