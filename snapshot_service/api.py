# snapshot_service/api.py
"""
HTTP surface: health check and admin endpoints.

Usage:
    uvicorn snapshot_service.api:app

The lifespan starts a SnapshotService built from the environment unless one
is passed to create_app(); an injected service is never started or stopped
here. Startup and shutdown block on the store, so they run in a worker
thread.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from snapshot_service.constants import ServiceDefaults
from snapshot_service.routers.admin_snapshots import router as admin_snapshots_router
from snapshot_service.service import SnapshotService


def create_app(service: SnapshotService | None = None) -> FastAPI:
    owns_service = service is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_service:
            from snapshot_service.config import get_settings
            from snapshot_service.logging_config import configure_logging

            settings = get_settings()
            configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
            app.state.service = SnapshotService(settings)
            await asyncio.to_thread(app.state.service.startup)
        try:
            yield
        finally:
            if owns_service:
                await asyncio.to_thread(app.state.service.shutdown)

    app = FastAPI(title="Snapshot Service", lifespan=lifespan)
    if service is not None:
        app.state.service = service

    app.include_router(admin_snapshots_router)

    # ---------------------------------------------------------------------------
    # Health
    # ---------------------------------------------------------------------------

    @app.get("/health")
    def health(request: Request) -> dict:
        store_ok = request.app.state.service.healthy()
        return {
            "status": "ok" if store_ok else "degraded",
            "service": ServiceDefaults.SERVICE_NAME,
            "store": store_ok,
        }

    return app


app = create_app()
