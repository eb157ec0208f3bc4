"""
backend/app/routers/admin_sync.py

Purpose:
    Operator API for season synchronization, result ingestion, rescoring and
    the sync run log. Guarded by the shared X-Sync-Key secret.

Dependencies:
    - app.workers.season_sync
    - app.workers.result_resolver
    - app.services.sync_run_log
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.config import settings
from app.providers.http_client import ProviderError
from app.services.event_result_service import (
    EmptyClassificationError,
    EventNotFoundError,
    ResultIngestError,
    ResultNotRecordedError,
)
from app.services.sync_run_log import sync_run_log
from app.workers.result_resolver import run_rescore, run_result_ingest
from app.workers.season_sync import run_season_sync, season_sync_in_progress

router = APIRouter(prefix="/api/admin/sync", tags=["admin-sync"])
logger = logging.getLogger("pitwall.admin_sync")


async def verify_sync_key(x_sync_key: str = Header(...)):
    """Verify the shared operator key for sync endpoints."""
    if not settings.SYNC_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync API key not configured on server.",
        )
    if not secrets.compare_digest(x_sync_key, settings.SYNC_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid sync API key.",
        )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SeasonSyncRequest(BaseModel):
    season: int = Field(..., ge=1950, le=2100)
    background: bool = False


class EventResultRequest(BaseModel):
    season: int = Field(..., ge=1950, le=2100)
    round: int = Field(..., ge=1, le=30)


def _ingest_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, EventNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (EmptyClassificationError, ResultNotRecordedError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ResultIngestError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Provider error: {exc}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/season")
async def sync_season(
    body: SeasonSyncRequest,
    background_tasks: BackgroundTasks,
    _=Depends(verify_sync_key),
) -> dict[str, Any]:
    """Run a season sync. With background=true the call returns immediately."""
    if body.background:
        background_tasks.add_task(run_season_sync, body.season, trigger="admin")
        return {
            "season": body.season,
            "status": "queued",
            "already_running": season_sync_in_progress(body.season),
        }
    result = await run_season_sync(body.season, trigger="admin")
    logger.info("Admin season sync %d success=%s", body.season, result["success"])
    return dict(result)


@router.post("/results")
async def ingest_results(body: EventResultRequest, _=Depends(verify_sync_key)) -> dict[str, Any]:
    """Ingest one event's race result and trigger scoring."""
    try:
        summary = await run_result_ingest(body.season, body.round, trigger="admin")
    except (ResultIngestError, ProviderError) as exc:
        raise _ingest_http_error(exc) from exc
    return dict(summary)


@router.post("/rescore")
async def rescore(body: EventResultRequest, _=Depends(verify_sync_key)) -> dict[str, Any]:
    """Re-trigger scoring from the stored result document."""
    try:
        summary = await run_rescore(body.season, body.round, trigger="admin")
    except ResultIngestError as exc:
        raise _ingest_http_error(exc) from exc
    return dict(summary)


@router.get("/runs")
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    kind: Literal["season_sync", "event_result", "rescore"] | None = Query(None),
    season: int | None = Query(None, ge=1950, le=2100),
    _=Depends(verify_sync_key),
) -> dict[str, Any]:
    rows = await sync_run_log.recent(limit=limit, kind=kind, season=season)
    return {"items": rows, "count": len(rows)}
