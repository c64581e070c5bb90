"""
FastAPI application factory for the reference sync backend.

A minimal server implementing the snapshot wire contract the sync
engine's HTTP client speaks. It is useful for:
- Integration tests (mounted through httpx.ASGITransport)
- Local development without a hosted backend

Run with any ASGI server, e.g.:
    python -m gobex.sync_engine.api.http_server
    uvicorn --factory gobex.sync_engine.api.http_server:create_app --port 8090

Invariants:
    - A token only ever reads or writes its own tenant's snapshot
    - Every upload replaces the snapshot and stamps last_sync
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .._version import __version__
from .config import Settings
from .repository import SnapshotRepository
from .routes import router


def create_app(
    settings: Settings | None = None,
    repository: SnapshotRepository | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Server settings (default: loaded from environment)
        repository: Snapshot storage (default: a fresh in-memory one)
    """
    settings = settings or Settings()

    app = FastAPI(
        title="Gobex Sync Backend",
        description="Whole-snapshot storage per tenant for the Gobex sync engine.",
        version=__version__,
    )
    app.state.settings = settings
    app.state.repository = repository or SnapshotRepository()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "gobex-sync-backend",
            "tenants": app.state.repository.tenant_count(),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    server_settings = Settings()
    uvicorn.run(create_app(server_settings), host=server_settings.host, port=server_settings.port)
