"""
backend/app/services/event_result_service.py

Purpose:
    Attach the race result document to an already-synced event, mark its race
    session completed, then hand off to scoring. Preconditions (event exists,
    classification non-empty) are fatal and raised to the caller; a failed
    qualifying fetch only degrades pole to None.

Dependencies:
    - app.database
    - app.providers.ergast
    - app.providers.ergast_transformers
    - app.services.event_bus
    - app.services.fk_resolver
"""

from __future__ import annotations

import logging
from typing import Any

from bson import ObjectId

import app.database as _db
from app.config import settings
from app.models.f1 import ClassificationRow, QualifyingRow, ResultDocument, SessionType
from app.providers.ergast import ergast_provider
from app.providers.ergast_transformers import fastest_lap_holder, pole_position_holder, top_finishers
from app.services.entity_reconciler import EntityFamily
from app.services.event_bus import InMemoryEventBus, event_bus
from app.services.event_models import EventCompletedEvent
from app.services.fk_resolver import ForeignKeyResolver
from app.services.result_ingest_hooks import ResultIngestHooks
from app.services.season_sync_types import EventResultSummary, StatsClient
from app.utils import utcnow

logger = logging.getLogger("pitwall.event_result")


class ResultIngestError(Exception):
    """Result ingestion did not happen for this event."""

    def __init__(self, season: int, round: int, message: str):
        self.season = int(season)
        self.round = int(round)
        super().__init__(f"{season}/{round}: {message}")


class EventNotFoundError(ResultIngestError):
    def __init__(self, season: int, round: int):
        super().__init__(season, round, "event not synced yet")


class EmptyClassificationError(ResultIngestError):
    def __init__(self, season: int, round: int):
        super().__init__(season, round, "provider returned no race classification")


class ResultNotRecordedError(ResultIngestError):
    def __init__(self, season: int, round: int):
        super().__init__(season, round, "event has no stored result document")


def build_result_document(
    race_rows: list[ClassificationRow],
    qualifying_rows: list[QualifyingRow],
    top_n: int,
) -> ResultDocument:
    return ResultDocument(
        positions=top_finishers(race_rows, max(0, int(top_n))),
        pole=pole_position_holder(qualifying_rows),
        fastest_lap=fastest_lap_holder(race_rows),
        full_results=sorted(race_rows, key=lambda row: (row.position <= 0, row.position)),
    )


class EventResultIngestor:
    def __init__(
        self,
        *,
        client: StatsClient | None = None,
        database=None,
        resolver: ForeignKeyResolver | None = None,
        bus: InMemoryEventBus | None = None,
        top_n: int | None = None,
    ) -> None:
        self._client = client
        self._db = database
        self.resolver = resolver or ForeignKeyResolver(database)
        self._bus = bus
        self._top_n = top_n

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    @property
    def client(self) -> StatsClient:
        return self._client or ergast_provider

    @property
    def bus(self) -> InMemoryEventBus:
        return self._bus or event_bus

    @property
    def top_n(self) -> int:
        return self._top_n if self._top_n is not None else settings.RESULT_TOP_N

    async def _require_event(self, season: int, round: int, projection: dict[str, int]) -> dict[str, Any]:
        event = await self.resolver.lookup(EntityFamily.event, {"season": season, "round": round}, projection)
        if event is None:
            raise EventNotFoundError(season, round)
        return event

    async def _fetch_qualifying(self, season: int, round: int) -> list[QualifyingRow]:
        try:
            return await self.client.get_qualifying_classification(season, round)
        except Exception:
            logger.warning("Qualifying unavailable for %d/%d, pole recorded as absent", season, round, exc_info=True)
            return []

    async def ingest_event_result(
        self,
        season: int,
        round: int,
        *,
        hooks: ResultIngestHooks | None = None,
    ) -> EventResultSummary:
        season, round = int(season), int(round)
        event = await self._require_event(season, round, {"_id": 1})
        event_id: ObjectId = event["_id"]

        race_rows = await self.client.get_race_classification(season, round)
        if not race_rows:
            raise EmptyClassificationError(season, round)
        qualifying_rows = await self._fetch_qualifying(season, round)

        document = build_result_document(race_rows, qualifying_rows, self.top_n)
        now = utcnow()
        # Result first: a completed race session always has a result behind it.
        await self.db.events.update_one(
            {"_id": event_id},
            {"$set": {"result": document.model_dump(), "result_updated_at": now, "updated_at": now}},
        )
        session_update = await self.db.sessions.update_one(
            {"event_id": event_id, "type": SessionType.race.value},
            {"$set": {"completed": True, "completed_at": now, "updated_at": now}},
        )
        session_completed = session_update.matched_count > 0
        if not session_completed:
            logger.warning("Event %d/%d has no race session to mark completed", season, round)

        summary: EventResultSummary = {
            "season": season,
            "round": round,
            "event_id": str(event_id),
            "result_count": len(race_rows),
            "pole": document.pole,
            "fastest_lap": document.fastest_lap,
            "session_completed": session_completed,
            "scoring_triggered": False,
        }
        summary["scoring_triggered"] = await self._hand_off(event_id, summary, hooks=hooks, rescore=False)
        logger.info(
            "Result recorded for %d/%d rows=%d pole=%s fastest_lap=%s scoring=%s",
            season, round, summary["result_count"], summary["pole"], summary["fastest_lap"],
            summary["scoring_triggered"],
        )
        return summary

    async def trigger_scoring(
        self,
        season: int,
        round: int,
        *,
        hooks: ResultIngestHooks | None = None,
    ) -> EventResultSummary:
        """Re-run the scoring hand-off from the stored result document."""
        season, round = int(season), int(round)
        event = await self._require_event(season, round, {"_id": 1, "result": 1})
        stored = event.get("result")
        if not stored or not stored.get("full_results"):
            raise ResultNotRecordedError(season, round)
        race_session = await self.db.sessions.find_one(
            {"event_id": event["_id"], "type": SessionType.race.value},
            {"completed": 1},
        )
        summary: EventResultSummary = {
            "season": season,
            "round": round,
            "event_id": str(event["_id"]),
            "result_count": len(stored.get("full_results") or []),
            "pole": stored.get("pole"),
            "fastest_lap": stored.get("fastest_lap"),
            "session_completed": bool((race_session or {}).get("completed")),
            "scoring_triggered": False,
        }
        summary["scoring_triggered"] = await self._hand_off(event["_id"], summary, hooks=hooks, rescore=True)
        logger.info("Rescore requested for %d/%d triggered=%s", season, round, summary["scoring_triggered"])
        return summary

    async def _hand_off(
        self,
        event_id: ObjectId,
        summary: EventResultSummary,
        *,
        hooks: ResultIngestHooks | None,
        rescore: bool,
    ) -> bool:
        triggered = False
        if hooks is not None:
            try:
                await hooks.on_result_recorded(event_id, summary)
                triggered = True
            except Exception:
                logger.warning("Result hook failed for event %s", event_id, exc_info=True)

        if settings.EVENT_BUS_ENABLED and self.bus.running:
            published = await self.bus.publish(
                EventCompletedEvent(
                    source="event_result_ingestor",
                    race_event_id=str(event_id),
                    season=summary["season"],
                    round=summary["round"],
                    result_count=summary["result_count"],
                    rescore=rescore,
                )
            )
            triggered = triggered or published
        return triggered


event_result_ingestor = EventResultIngestor()
