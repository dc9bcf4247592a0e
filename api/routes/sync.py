"""
Sync control endpoints: trigger runs, inspect history, follow and cancel batches
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import List, Optional
import logging

from api.dependencies import get_sync_service
from core.exceptions import BatchNotFoundError, FetchFailure
from models.base import SyncStatus
from pipeline.service import CatalogSyncService
from schemas.sync import (
    BatchSnapshot,
    SyncDispatchResult,
    SyncRunResponse,
    SyncStatsSummary,
    SyncTriggerRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("", response_model=SyncDispatchResult, status_code=202)
async def trigger_sync(
    request: Request,
    payload: Optional[SyncTriggerRequest] = None,
    service: CatalogSyncService = Depends(get_sync_service)
):
    """
    Fetch the catalog and dispatch it as a batch.

    Returns as soon as the batch is scheduled; follow it with
    GET /sync/batches/{batch_id}.
    """
    payload = payload or SyncTriggerRequest()
    request_id = getattr(request.state, "request_id", None)
    logger.info(f"[{request_id}] POST /sync - batch_size={payload.batch_size}, source_url={payload.source_url}")

    try:
        return await service.sync(
            sync_type=payload.sync_type,
            batch_size=payload.batch_size,
            source_url=payload.source_url
        )
    except FetchFailure as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.get("/runs", response_model=List[SyncRunResponse])
async def list_runs(
    days: int = Query(7, ge=0, description="Runs started within the last N days"),
    status: Optional[SyncStatus] = Query(None, description="Filter by status"),
    sync_type: Optional[str] = Query(None, description="Filter by run kind"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of runs"),
    service: CatalogSyncService = Depends(get_sync_service)
):
    """Recent sync runs, newest first"""
    runs = await service.ledger.recent(days, status=status, sync_type=sync_type, limit=limit)
    return [SyncRunResponse.model_validate(run) for run in runs]


@router.get("/runs/{run_id}", response_model=SyncRunResponse)
async def get_run(run_id: int, service: CatalogSyncService = Depends(get_sync_service)):
    run = await service.ledger.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Sync run not found: {run_id}")
    return SyncRunResponse.model_validate(run)


@router.get("/stats", response_model=SyncStatsSummary)
async def get_stats(
    days: int = Query(30, ge=0, description="Aggregate over the last N days"),
    service: CatalogSyncService = Depends(get_sync_service)
):
    """Aggregate statistics over recent runs"""
    return await service.ledger.stats(days)


@router.get("/batches/{batch_id}", response_model=BatchSnapshot)
async def get_batch(batch_id: str, service: CatalogSyncService = Depends(get_sync_service)):
    """Current counters of a dispatched batch"""
    try:
        return await service.coordinator.snapshot(batch_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/batches/{batch_id}/cancel", response_model=BatchSnapshot)
async def cancel_batch(batch_id: str, service: CatalogSyncService = Depends(get_sync_service)):
    """Cancel a batch; products not yet started are skipped"""
    try:
        return await service.coordinator.cancel(batch_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
