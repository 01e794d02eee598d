# snapshot_service/routers/admin_snapshots.py
"""
Admin endpoints for snapshot management.

GET  /v1/admin/snapshots/stats   - Snapshot counts per tier and database
POST /v1/admin/snapshots/cleanup - Trigger a cleanup pass (expiry + caps)
POST /v1/admin/snapshots/indexes - Ensure snapshot views in every database
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from snapshot_service.auth import require_admin_key
from snapshot_service.errors import StoreConnectionError
from snapshot_service.service import SnapshotService
from snapshot_service.services.fan_out import fan_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin/snapshots", tags=["admin-snapshots"])


def get_service(request: Request) -> SnapshotService:
    return request.app.state.service


# -----------------------------------------------------------------------------
# Request / Response Models
# -----------------------------------------------------------------------------


class DatabaseStatsResponse(BaseModel):
    total: int
    byTier: dict[str, int]


class StatsResponse(BaseModel):
    """Snapshot statistics across tenant databases."""

    totalDatabases: int
    totalSnapshots: int
    byTier: dict[str, int]
    byDatabase: dict[str, DatabaseStatsResponse]
    failedDatabases: list[str] = []


class CleanupRequest(BaseModel):
    """Request to trigger a cleanup pass."""

    dry_run: bool = Field(False, description="Preview only, don't delete")


class CleanupResponse(BaseModel):
    """Cleanup pass result."""

    success: bool
    dry_run: bool
    databases: int
    expired_deleted: int
    excess_deleted: int
    failed_databases: list[str]
    duration_ms: int


class IndexesResponse(BaseModel):
    """Design document outcome per database."""

    outcomes: dict[str, str]
    errors: dict[str, str]


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    service: SnapshotService = Depends(get_service),
    _: None = Depends(require_admin_key),
) -> StatsResponse:
    """
    Get snapshot statistics.

    Databases whose query failed are listed in failedDatabases and excluded
    from the totals.
    """
    try:
        stats = service.retention_manager.get_all_snapshot_stats()
    except StoreConnectionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return StatsResponse(**stats.to_dict(), failedDatabases=stats.failed_databases)


@router.post("/cleanup", response_model=CleanupResponse)
def trigger_cleanup(
    request: CleanupRequest,
    service: SnapshotService = Depends(get_service),
    _: None = Depends(require_admin_key),
) -> CleanupResponse:
    """
    Trigger a cleanup pass: expired snapshots first, then per-story caps.

    Safe to run concurrently with scheduled cleanup; a snapshot deleted by
    the other pass is simply not counted here.
    """
    logger.info(f"Manual cleanup requested (dry_run={request.dry_run})")
    try:
        report = service.retention_manager.run_cleanup(dry_run=request.dry_run)
    except StoreConnectionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return CleanupResponse(
        success=not report.failed_databases,
        dry_run=report.dry_run,
        databases=report.databases,
        expired_deleted=report.expired_deleted,
        excess_deleted=report.excess_deleted,
        failed_databases=report.failed_databases,
        duration_ms=report.duration_ms,
    )


@router.post("/indexes", response_model=IndexesResponse)
def ensure_indexes(
    service: SnapshotService = Depends(get_service),
    _: None = Depends(require_admin_key),
) -> IndexesResponse:
    """Create or update the snapshot views in every tenant database."""
    try:
        databases = service.store.list_tenant_databases()
    except StoreConnectionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    result = fan_out(
        databases,
        service.index_manager.ensure_indexes,
        operation="ensure_indexes",
        max_workers=service.settings.BATCH_SIZE,
    )

    return IndexesResponse(
        outcomes={db_name: outcome.value for db_name, outcome in result.results.items()},
        errors=result.errors,
    )
