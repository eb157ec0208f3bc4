"""
backend/app/services/event_handlers/scoring_handlers.py

Purpose:
    Scoring hand-off. A completed race weekend gets one scoring_queue entry,
    reset to pending on every completion or rescore; the downstream scorer
    claims pending entries on its own schedule.

Dependencies:
    - app.database
    - app.services.event_models
"""

from __future__ import annotations

import logging

from bson import ObjectId
from bson.errors import InvalidId

import app.database as _db
from app.services.event_models import BaseEvent
from app.services.season_sync_types import EventResultSummary
from app.utils import utcnow

logger = logging.getLogger("pitwall.event_handlers.scoring")


async def enqueue_scoring(
    event_id: ObjectId,
    season: int,
    round: int,
    *,
    reason: str,
    database=None,
) -> bool:
    """Upsert the scoring_queue entry for one event. Returns True when newly created."""
    db = database if database is not None else _db.db
    now = utcnow()
    result = await db.scoring_queue.update_one(
        {"event_id": event_id},
        {
            "$set": {
                "season": int(season),
                "round": int(round),
                "status": "pending",
                "reason": reason,
                "requested_at": now,
                "attempts": 0,
                "last_error": None,
            },
            "$setOnInsert": {"event_id": event_id, "created_at": now},
        },
        upsert=True,
    )
    return result.upserted_id is not None


async def handle_event_completed(event: BaseEvent) -> None:
    raw_id = str(getattr(event, "race_event_id", "") or "")
    try:
        event_oid = ObjectId(raw_id)
    except (InvalidId, TypeError):
        logger.warning("event.completed with invalid race_event_id=%r", raw_id)
        return
    season = int(getattr(event, "season", 0) or 0)
    round = int(getattr(event, "round", 0) or 0)
    reason = "rescore" if getattr(event, "rescore", False) else "completed"
    created = await enqueue_scoring(event_oid, season, round, reason=reason)
    logger.info(
        "Scoring queued for %d/%d event_id=%s reason=%s new=%s",
        season, round, raw_id, reason, created,
    )


class ScoringQueueHooks:
    """Result hooks that enqueue scoring directly, for flows without a running bus."""

    def __init__(self, database=None) -> None:
        self._db = database

    async def on_result_recorded(self, event_id: ObjectId, summary: EventResultSummary) -> None:
        await enqueue_scoring(
            event_id,
            summary["season"],
            summary["round"],
            reason="completed",
            database=self._db,
        )
