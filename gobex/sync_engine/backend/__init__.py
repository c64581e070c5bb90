"""
Remote backend abstraction for the Gobex sync engine.

This module provides a pluggable backend interface:
- HTTP API (production)
- In-memory (for testing)

Invariants:
    - The remote backend is never the source of truth between syncs
    - Transport failures raise, backend rejections return success=False

How to change safely:
    - New backends must implement the RemoteBackend protocol
    - Keep the HTTP wire contract compatible with deployed servers
"""

from .base import (
    EPOCH,
    BackendError,
    BackendTimeoutError,
    BackendTransportError,
    PullResult,
    PushResult,
    RemoteBackend,
    create_remote_backend,
    parse_timestamp,
    utcnow,
)
from .http import HttpRemoteBackend
from .memory import InMemoryRemoteBackend

__all__ = [
    # Protocol and types
    "RemoteBackend",
    "PushResult",
    "PullResult",
    "BackendError",
    "BackendTransportError",
    "BackendTimeoutError",
    "EPOCH",
    "parse_timestamp",
    "utcnow",
    # Factory
    "create_remote_backend",
    # Implementations
    "HttpRemoteBackend",
    "InMemoryRemoteBackend",
]
