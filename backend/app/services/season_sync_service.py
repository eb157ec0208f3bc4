"""
backend/app/services/season_sync_service.py

Purpose:
    Season synchronization pipeline. Reconciles teams, competitors, venues,
    events+sessions and both standings families in dependency order; each
    step hands the next one the natural-key -> ObjectId table it produced.
    Failures are collected into the SyncResult instead of aborting the run,
    and nothing already reconciled is rolled back.

Dependencies:
    - app.providers.ergast
    - app.services.entity_reconciler
    - app.services.fk_resolver
    - app.services.season_sync_types
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TypeVar

from bson import ObjectId

from app.models.f1 import StandingRow, StandingsSnapshot, StandingType
from app.providers.ergast import ergast_provider
from app.services.entity_reconciler import EntityFamily, EntityReconciler, InvalidEntityError
from app.services.fk_resolver import ForeignKeyResolver
from app.services.season_sync_types import FamilyCounts, StatsClient, SyncResult, SyncStep, SyncWarning
from app.utils import utcnow

logger = logging.getLogger("pitwall.season_sync")

T = TypeVar("T")


def _empty_counts() -> FamilyCounts:
    return {
        "teams": 0,
        "competitors": 0,
        "venues": 0,
        "events": 0,
        "sessions": 0,
        "driver_standings": 0,
        "constructor_standings": 0,
    }


def _empty_result(season: int) -> SyncResult:
    return {
        "season": int(season),
        "success": True,
        "per_family_counts": _empty_counts(),
        "created": _empty_counts(),
        "errors": [],
        "warnings": [],
        "started_at": utcnow(),
        "finished_at": None,
    }


def _append_error(result: SyncResult, step: SyncStep, exc: BaseException, context: str | None = None) -> None:
    message = str(exc) or type(exc).__name__
    if context:
        message = f"{context}: {message}"
    result["errors"].append({"step": step, "message": message, "type": type(exc).__name__})
    result["success"] = False


def _append_warning(
    result: SyncResult,
    code: str,
    step: SyncStep,
    natural_key: str,
    message: str,
) -> None:
    warning: SyncWarning = {"code": code, "step": step, "natural_key": natural_key, "message": message}
    result["warnings"].append(warning)
    logger.warning("season=%s step=%s %s (%s)", result["season"], step, message, natural_key)


def _count(result: SyncResult, family: str, created: bool) -> None:
    result["per_family_counts"][family] += 1
    if created:
        result["created"][family] += 1


class SeasonSyncService:
    def __init__(
        self,
        *,
        client: StatsClient | None = None,
        database=None,
        reconciler: EntityReconciler | None = None,
        resolver: ForeignKeyResolver | None = None,
    ) -> None:
        self._client = client
        self.reconciler = reconciler or EntityReconciler(database)
        self.resolver = resolver or ForeignKeyResolver(database)

    @property
    def client(self) -> StatsClient:
        return self._client or ergast_provider

    async def sync_season(self, season: int) -> SyncResult:
        """Run every step in order. Never raises; failures land in ``errors``."""
        season = int(season)
        result = _empty_result(season)
        logger.info("Season sync started season=%d", season)

        team_ids = await self._run_step(result, "teams", self._sync_teams(season, result)) or {}
        competitor_ids = await self._run_step(
            result, "competitors", self._sync_competitors(season, result, team_ids),
        ) or {}
        venue_ids = await self._run_step(result, "venues", self._sync_venues(result)) or {}
        await self._run_step(result, "events", self._sync_events(season, result, venue_ids))
        await self._run_step(
            result,
            "standings",
            self._sync_standings(
                season, result, StandingType.competitor, competitor_ids,
            ),
        )
        await self._run_step(
            result,
            "standings",
            self._sync_standings(season, result, StandingType.team, team_ids),
        )

        result["finished_at"] = utcnow()
        logger.info(
            "Season sync finished season=%d success=%s counts=%s errors=%d warnings=%d",
            season, result["success"], result["per_family_counts"],
            len(result["errors"]), len(result["warnings"]),
        )
        return result

    async def _run_step(self, result: SyncResult, step: SyncStep, work: Awaitable[T]) -> T | None:
        try:
            return await work
        except Exception as exc:
            logger.error("Season sync step failed season=%s step=%s", result["season"], step, exc_info=True)
            _append_error(result, step, exc)
            return None

    # ---------- Step 1: teams ----------

    async def _sync_teams(self, season: int, result: SyncResult) -> dict[str, ObjectId]:
        table: dict[str, ObjectId] = {}
        for record in await self.client.get_teams(season):
            try:
                outcome = await self.reconciler.upsert(
                    EntityFamily.team,
                    record.provider_id,
                    {"name": record.name, "nationality": record.nationality},
                )
            except Exception as exc:
                _append_error(result, "teams", exc, context=f"team {record.provider_id}")
                continue
            table[record.provider_id] = outcome.entity_id
            _count(result, "teams", outcome.created)
        logger.info("season=%d teams reconciled=%d", season, result["per_family_counts"]["teams"])
        return table

    # ---------- Step 2: competitors ----------

    async def _competitor_team_map(self, season: int, result: SyncResult) -> dict[str, str | None] | None:
        """competitor provider id -> team provider id from the season's current standings.

        None means the mapping could not be fetched; team references are then
        left untouched rather than cleared.
        """
        try:
            snapshot = await self.client.get_competitor_standings(season)
        except Exception as exc:
            logger.error("season=%d competitor standings unavailable for team mapping", season, exc_info=True)
            _append_error(result, "competitors", exc, context="team mapping")
            return None
        if snapshot is None:
            return {}
        return {entry.subject_provider_id: entry.team_provider_id for entry in snapshot.entries}

    async def _advance_current_team(self, season: int, competitor_id: ObjectId, team_id: ObjectId | None) -> bool:
        # Guarded in the update filter so an older season never overwrites the
        # current team reference, even with another season syncing concurrently.
        return await self.reconciler.update_where(
            EntityFamily.competitor,
            competitor_id,
            {"$or": [{"team_season": None}, {"team_season": {"$lte": season}}]},
            {"team_id": team_id, "team_season": season},
        )

    async def _sync_competitors(
        self,
        season: int,
        result: SyncResult,
        team_ids: dict[str, ObjectId],
    ) -> dict[str, ObjectId]:
        records = await self.client.get_competitors(season)
        team_map = await self._competitor_team_map(season, result)
        table: dict[str, ObjectId] = {}
        for record in records:
            try:
                fields = record.model_dump(exclude={"provider_id"})
                team_id: ObjectId | None = None
                if team_map is not None:
                    team_id = await self.resolver.resolve_cached(
                        EntityFamily.team, team_map.get(record.provider_id), team_ids,
                    )
                    fields[f"teams_by_season.{season}"] = team_id
                outcome = await self.reconciler.upsert(
                    EntityFamily.competitor,
                    record.provider_id,
                    fields,
                    on_insert={"team_id": None},
                )
                if team_map is not None:
                    await self._advance_current_team(season, outcome.entity_id, team_id)
            except Exception as exc:
                _append_error(result, "competitors", exc, context=f"competitor {record.provider_id}")
                continue
            table[record.provider_id] = outcome.entity_id
            _count(result, "competitors", outcome.created)
        logger.info("season=%d competitors reconciled=%d", season, result["per_family_counts"]["competitors"])
        return table

    # ---------- Step 3: venues ----------

    async def _sync_venues(self, result: SyncResult) -> dict[str, ObjectId]:
        table: dict[str, ObjectId] = {}
        for record in await self.client.get_venues():
            try:
                outcome = await self.reconciler.upsert(
                    EntityFamily.venue,
                    record.provider_id,
                    {"name": record.name, "country": record.country, "city": record.city},
                )
            except Exception as exc:
                _append_error(result, "venues", exc, context=f"venue {record.provider_id}")
                continue
            table[record.provider_id] = outcome.entity_id
            _count(result, "venues", outcome.created)
        logger.info("venues reconciled=%d", result["per_family_counts"]["venues"])
        return table

    # ---------- Step 4: events + sessions ----------

    async def _sync_events(self, season: int, result: SyncResult, venue_ids: dict[str, ObjectId]) -> None:
        for record in await self.client.get_schedule(season):
            event_key = f"{record.season}/{record.round}"
            try:
                venue_id = await self.resolver.resolve_cached(EntityFamily.venue, record.venue_provider_id, venue_ids)
                if venue_id is None:
                    _append_warning(
                        result,
                        "missing_venue",
                        "events",
                        event_key,
                        f"event skipped, venue {record.venue_provider_id!r} not reconciled",
                    )
                    continue
                event = await self.reconciler.upsert(
                    EntityFamily.event,
                    {"season": record.season, "round": record.round},
                    {
                        "name": record.name,
                        "date": record.date,
                        "has_sprint": record.has_sprint,
                        "venue_id": venue_id,
                    },
                    on_insert={"result": None},
                )
                _count(result, "events", event.created)
                for session in record.sessions:
                    outcome = await self.reconciler.upsert(
                        EntityFamily.session,
                        {"event_id": event.entity_id, "type": session.type},
                        {"scheduled_at": session.scheduled_at},
                        on_insert={"completed": False},
                    )
                    _count(result, "sessions", outcome.created)
            except Exception as exc:
                _append_error(result, "events", exc, context=f"event {event_key}")
        logger.info(
            "season=%d events reconciled=%d sessions=%d",
            season, result["per_family_counts"]["events"], result["per_family_counts"]["sessions"],
        )

    # ---------- Step 5: standings ----------

    async def _sync_standings(
        self,
        season: int,
        result: SyncResult,
        kind: StandingType,
        subject_ids: dict[str, ObjectId],
    ) -> None:
        if kind == StandingType.competitor:
            snapshot: StandingsSnapshot | None = await self.client.get_competitor_standings(season)
            subject_family, counter = EntityFamily.competitor, "driver_standings"
        else:
            snapshot = await self.client.get_team_standings(season)
            subject_family, counter = EntityFamily.team, "constructor_standings"
        if snapshot is None or not snapshot.entries:
            logger.info("season=%d no %s standings published yet", season, kind.value)
            return

        for entry in snapshot.entries:
            try:
                subject_id = await self.resolver.resolve_cached(subject_family, entry.subject_provider_id, subject_ids)
                if subject_id is None:
                    _append_warning(
                        result,
                        "missing_subject",
                        "standings",
                        entry.subject_provider_id,
                        f"{kind.value} standing skipped, subject not reconciled",
                    )
                    continue
                row = StandingRow(
                    season=season,
                    round=snapshot.round,
                    type=kind,
                    competitor_id=subject_id if kind == StandingType.competitor else None,
                    team_id=subject_id if kind == StandingType.team else None,
                    position=entry.position,
                    points=entry.points,
                    wins=entry.wins,
                )
                outcome = await self.reconciler.upsert(
                    EntityFamily.standing,
                    row.natural_key(),
                    {"position": row.position, "points": row.points, "wins": row.wins},
                )
            except (InvalidEntityError, ValueError) as exc:
                _append_warning(result, "invalid_record", "standings", entry.subject_provider_id, str(exc))
                continue
            except Exception as exc:
                _append_error(result, "standings", exc, context=f"{kind.value} standing {entry.subject_provider_id}")
                continue
            _count(result, counter, outcome.created)
        logger.info(
            "season=%d round=%d %s standings reconciled=%d",
            season, snapshot.round, kind.value, result["per_family_counts"][counter],
        )


season_sync_service = SeasonSyncService()
