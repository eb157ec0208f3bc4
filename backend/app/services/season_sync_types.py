"""
backend/app/services/season_sync_types.py

Purpose:
    Shared type contracts for season sync and result ingestion: the
    statistics client protocol consumed by both flows and the structured
    result/summary dictionaries they return.

Dependencies:
    - typing
    - app.models.f1
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Protocol, TypedDict

from app.models.f1 import (
    ClassificationRow,
    CompetitorRecord,
    EventRecord,
    QualifyingRow,
    StandingsSnapshot,
    TeamRecord,
    VenueRecord,
)


class StatsClient(Protocol):
    async def get_teams(self, season: int) -> list[TeamRecord]:
        ...

    async def get_competitors(self, season: int) -> list[CompetitorRecord]:
        ...

    async def get_competitor_standings(self, season: int) -> StandingsSnapshot | None:
        ...

    async def get_team_standings(self, season: int) -> StandingsSnapshot | None:
        ...

    async def get_venues(self) -> list[VenueRecord]:
        ...

    async def get_schedule(self, season: int) -> list[EventRecord]:
        ...

    async def get_race_classification(self, season: int, round: int) -> list[ClassificationRow]:
        ...

    async def get_qualifying_classification(self, season: int, round: int) -> list[QualifyingRow]:
        ...


SyncStep = Literal["teams", "competitors", "venues", "events", "standings"]


class FamilyCounts(TypedDict):
    teams: int
    competitors: int
    venues: int
    events: int
    sessions: int
    driver_standings: int
    constructor_standings: int


class SyncError(TypedDict):
    step: SyncStep
    message: str
    type: str


class SyncWarning(TypedDict):
    code: Literal["missing_venue", "missing_subject", "invalid_record"]
    step: SyncStep
    natural_key: str
    message: str


class SyncResult(TypedDict):
    season: int
    success: bool
    per_family_counts: FamilyCounts
    created: FamilyCounts
    errors: list[SyncError]
    warnings: list[SyncWarning]
    started_at: datetime
    finished_at: datetime | None


class EventResultSummary(TypedDict):
    season: int
    round: int
    event_id: str
    result_count: int
    pole: str | None
    fastest_lap: str | None
    session_completed: bool
    scoring_triggered: bool
