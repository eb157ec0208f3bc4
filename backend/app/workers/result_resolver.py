"""
backend/app/workers/result_resolver.py

Purpose:
    Poll for race results once a race should be over. Finds race sessions past
    start + grace that are not completed yet and runs result ingestion for
    each; results the provider has not published yet are retried next tick.

Dependencies:
    - app.database
    - app.services.event_result_service
    - app.services.sync_run_log
"""

import logging
from datetime import timedelta

import app.database as _db
from app.config import settings
from app.models.f1 import SessionType
from app.providers.http_client import ProviderError
from app.services.event_result_service import ResultIngestError, event_result_ingestor
from app.services.result_ingest_hooks import ResultIngestHooks
from app.services.season_sync_types import EventResultSummary
from app.services.sync_run_log import sync_run_log
from app.utils import utcnow

logger = logging.getLogger("pitwall.workers.result_resolver")


async def run_result_ingest(
    season: int,
    round: int,
    *,
    trigger: str = "manual",
    hooks: ResultIngestHooks | None = None,
) -> EventResultSummary:
    """Ingest one event's result with a sync_runs entry; errors are re-raised."""
    run_id = await sync_run_log.start("event_result", season=season, round=round, trigger=trigger)
    try:
        summary = await event_result_ingestor.ingest_event_result(season, round, hooks=hooks)
    except Exception as exc:
        await sync_run_log.finish(run_id, "failed", error=exc)
        raise
    await sync_run_log.finish(run_id, "succeeded", summary=dict(summary))
    return summary


async def run_rescore(season: int, round: int, *, trigger: str = "manual") -> EventResultSummary:
    run_id = await sync_run_log.start("rescore", season=season, round=round, trigger=trigger)
    try:
        summary = await event_result_ingestor.trigger_scoring(season, round)
    except Exception as exc:
        await sync_run_log.finish(run_id, "failed", error=exc)
        raise
    await sync_run_log.finish(run_id, "succeeded", summary=dict(summary))
    return summary


async def find_pending_races(*, database=None) -> list[dict]:
    """(season, round) pairs whose race should be finished but has no result yet."""
    db = database if database is not None else _db.db
    now = utcnow()
    grace = timedelta(hours=settings.RESULT_RESOLVER_GRACE_HOURS)
    lookback = timedelta(days=settings.RESULT_RESOLVER_LOOKBACK_DAYS)
    sessions = await db.sessions.find(
        {
            "type": SessionType.race.value,
            "completed": {"$ne": True},
            "scheduled_at": {"$lte": now - grace, "$gte": now - lookback},
        },
        {"event_id": 1, "scheduled_at": 1},
    ).to_list(length=200)
    pending: list[dict] = []
    for session in sessions:
        event = await db.events.find_one({"_id": session["event_id"]}, {"season": 1, "round": 1})
        if event is None:
            logger.warning("Race session %s points at missing event %s", session["_id"], session["event_id"])
            continue
        pending.append({"season": int(event["season"]), "round": int(event["round"])})
    pending.sort(key=lambda row: (row["season"], row["round"]))
    return pending


async def resolve_results() -> None:
    """Scheduler job: ingest results for every finished-but-open race."""
    pending = await find_pending_races()
    if not pending:
        return
    logger.info("Result resolver: %d race(s) awaiting results", len(pending))
    for row in pending:
        try:
            await run_result_ingest(row["season"], row["round"], trigger="scheduler")
        except ResultIngestError as exc:
            logger.info("Result not available yet: %s", exc)
        except ProviderError as exc:
            logger.warning("Provider failed for %d/%d: %s", row["season"], row["round"], exc)
        except Exception:
            logger.error("Result ingestion failed for %d/%d", row["season"], row["round"], exc_info=True)
