"""
Reference HTTP sync backend for the Gobex sync engine.

Implements PUT/GET /v1/tenants/{tenant_id}/snapshot with bearer-token
tenant isolation.
"""

from .config import Settings
from .http_server import create_app
from .repository import SnapshotRepository

__all__ = ["create_app", "Settings", "SnapshotRepository"]
