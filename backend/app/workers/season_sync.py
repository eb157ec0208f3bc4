"""
backend/app/workers/season_sync.py

Purpose:
    Worker entrypoints for season synchronization. Serializes runs for the
    same season inside this process, records every run in sync_runs and
    publishes season.synced on the event bus.

Dependencies:
    - app.services.season_sync_service
    - app.services.sync_run_log
    - app.workers._state
"""

import asyncio
import logging
from datetime import timedelta

from app.config import settings
from app.services.event_bus import event_bus
from app.services.event_models import SeasonSyncedEvent
from app.services.season_sync_service import season_sync_service
from app.services.season_sync_types import SyncResult
from app.services.sync_run_log import sync_run_log
from app.utils import current_season
from app.workers._state import recently_synced, set_synced

logger = logging.getLogger("pitwall.workers.season_sync")

_season_locks: dict[int, asyncio.Lock] = {}


def _season_lock(season: int) -> asyncio.Lock:
    lock = _season_locks.get(season)
    if lock is None:
        lock = asyncio.Lock()
        _season_locks[season] = lock
    return lock


def season_sync_in_progress(season: int) -> bool:
    lock = _season_locks.get(int(season))
    return bool(lock and lock.locked())


def _run_status(result: SyncResult) -> str:
    if result["success"]:
        return "succeeded"
    counts = result["per_family_counts"]
    return "partial" if any(counts.values()) else "failed"


async def run_season_sync(season: int, *, trigger: str = "manual") -> SyncResult:
    """Sync one season; a second call for the same season waits for the first."""
    season = int(season)
    lock = _season_lock(season)
    if lock.locked():
        logger.info("Season %d sync already running, waiting (trigger=%s)", season, trigger)
    async with lock:
        run_id = await sync_run_log.start("season_sync", season=season, trigger=trigger)
        result = await season_sync_service.sync_season(season)
        await sync_run_log.finish(
            run_id,
            _run_status(result),
            summary={
                "per_family_counts": dict(result["per_family_counts"]),
                "created": dict(result["created"]),
                "errors": list(result["errors"]),
                "warnings": list(result["warnings"]),
            },
        )
        if result["success"]:
            await set_synced(f"season_sync:{season}", counts=dict(result["per_family_counts"]))

    if settings.EVENT_BUS_ENABLED and event_bus.running:
        await event_bus.publish(
            SeasonSyncedEvent(
                source="season_sync_worker",
                season=season,
                success=result["success"],
                per_family_counts=dict(result["per_family_counts"]),
                error_count=len(result["errors"]),
                warning_count=len(result["warnings"]),
            )
        )
    return result


async def sync_current_season() -> None:
    """Scheduler job: refresh the current season unless it synced recently."""
    season = current_season()
    max_age = timedelta(minutes=settings.SEASON_SYNC_MIN_AGE_MINUTES)
    if await recently_synced(f"season_sync:{season}", max_age):
        logger.debug("Season %d synced within %s, skipping", season, max_age)
        return
    result = await run_season_sync(season, trigger="scheduler")
    if not result["success"]:
        logger.warning("Scheduled season sync %d finished with %d errors", season, len(result["errors"]))
