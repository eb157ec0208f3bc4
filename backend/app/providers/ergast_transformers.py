"""
backend/app/providers/ergast_transformers.py

Purpose:
    Pure mapping functions from Ergast-shaped provider rows to typed candidate
    records. No I/O; every function takes one raw row (or list) and returns
    models from app.models.f1.

Dependencies:
    - app.models.f1
    - app.utils
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.models.f1 import (
    ClassificationRow,
    CompetitorRecord,
    EventRecord,
    QualifyingRow,
    SessionRecord,
    SessionType,
    StandingEntry,
    StandingsSnapshot,
    StandingType,
    TeamRecord,
    VenueRecord,
)
from app.utils import parse_utc

# Provider key -> session type, in weekend order. The race itself comes from
# the event's own date/time and is always appended last.
_SESSION_KEYS: tuple[tuple[str, SessionType], ...] = (
    ("FirstPractice", SessionType.fp1),
    ("SecondPractice", SessionType.fp2),
    ("ThirdPractice", SessionType.fp3),
    ("SprintQualifying", SessionType.sprint_qualifying),
    ("Sprint", SessionType.sprint),
    ("Qualifying", SessionType.qualifying),
)

_DEFAULT_SESSION_TIME = "14:00:00Z"


def _to_int(value: Any, default: int | None = None) -> int | None:
    try:
        if value is None or value == "":
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_session_datetime(date: str, time: str | None = None) -> datetime:
    """Combine provider date + time; sessions without a time default to 14:00 UTC."""
    return parse_utc(f"{date}T{time or _DEFAULT_SESSION_TIME}")


def transform_team(row: dict[str, Any]) -> TeamRecord:
    return TeamRecord(
        provider_id=str(row["constructorId"]),
        name=str(row.get("name") or row["constructorId"]),
        nationality=str(row.get("nationality") or ""),
    )


def transform_competitor(row: dict[str, Any]) -> CompetitorRecord:
    provider_id = str(row["driverId"])
    dob = row.get("dateOfBirth")
    return CompetitorRecord(
        provider_id=provider_id,
        code=str(row.get("code") or provider_id[:3].upper()),
        number=_to_int(row.get("permanentNumber")),
        first_name=str(row.get("givenName") or ""),
        last_name=str(row.get("familyName") or ""),
        nationality=str(row.get("nationality") or ""),
        date_of_birth=datetime.fromisoformat(dob).replace(tzinfo=timezone.utc) if dob else None,
    )


def transform_venue(row: dict[str, Any]) -> VenueRecord:
    location = row.get("Location") or {}
    return VenueRecord(
        provider_id=str(row["circuitId"]),
        name=str(row.get("circuitName") or row["circuitId"]),
        country=str(location.get("country") or ""),
        city=str(location.get("locality") or ""),
    )


def transform_event(row: dict[str, Any]) -> EventRecord:
    sessions: list[SessionRecord] = []
    for key, session_type in _SESSION_KEYS:
        node = row.get(key)
        if isinstance(node, dict) and node.get("date"):
            sessions.append(
                SessionRecord(
                    type=session_type,
                    scheduled_at=parse_session_datetime(node["date"], node.get("time")),
                )
            )
    race_start = parse_session_datetime(row["date"], row.get("time"))
    sessions.append(SessionRecord(type=SessionType.race, scheduled_at=race_start))

    return EventRecord(
        season=int(row["season"]),
        round=int(row["round"]),
        name=str(row.get("raceName") or ""),
        date=race_start,
        has_sprint=bool(row.get("Sprint") or row.get("SprintQualifying")),
        venue_provider_id=str((row.get("Circuit") or {}).get("circuitId") or ""),
        sessions=sessions,
    )


def transform_competitor_standings(standings_list: dict[str, Any] | None, season: int) -> StandingsSnapshot | None:
    if not standings_list:
        return None
    entries: list[StandingEntry] = []
    for row in standings_list.get("DriverStandings") or []:
        teams = row.get("Constructors") or []
        entries.append(
            StandingEntry(
                subject_provider_id=str(row["Driver"]["driverId"]),
                position=_to_int(row.get("position"), 0),
                points=_to_float(row.get("points")),
                wins=_to_int(row.get("wins"), 0),
                team_provider_id=str(teams[0]["constructorId"]) if teams else None,
            )
        )
    return StandingsSnapshot(
        season=_to_int(standings_list.get("season"), season),
        round=_to_int(standings_list.get("round"), 0),
        type=StandingType.competitor,
        entries=entries,
    )


def transform_team_standings(standings_list: dict[str, Any] | None, season: int) -> StandingsSnapshot | None:
    if not standings_list:
        return None
    entries = [
        StandingEntry(
            subject_provider_id=str(row["Constructor"]["constructorId"]),
            position=_to_int(row.get("position"), 0),
            points=_to_float(row.get("points")),
            wins=_to_int(row.get("wins"), 0),
        )
        for row in standings_list.get("ConstructorStandings") or []
    ]
    return StandingsSnapshot(
        season=_to_int(standings_list.get("season"), season),
        round=_to_int(standings_list.get("round"), 0),
        type=StandingType.team,
        entries=entries,
    )


def transform_race_results(rows: list[dict[str, Any]]) -> list[ClassificationRow]:
    results: list[ClassificationRow] = []
    for row in rows:
        fastest = row.get("FastestLap") or {}
        results.append(
            ClassificationRow(
                position=_to_int(row.get("position"), 0),
                competitor_provider_id=str(row["Driver"]["driverId"]),
                team_provider_id=str((row.get("Constructor") or {}).get("constructorId") or "") or None,
                points=_to_float(row.get("points")),
                grid=_to_int(row.get("grid")),
                laps=_to_int(row.get("laps")),
                status=str(row.get("status") or ""),
                time=(row.get("Time") or {}).get("time"),
                fastest_lap=str(fastest.get("rank") or "") == "1",
                fastest_lap_time=(fastest.get("Time") or {}).get("time"),
            )
        )
    return results


def transform_qualifying_results(rows: list[dict[str, Any]]) -> list[QualifyingRow]:
    return [
        QualifyingRow(
            position=_to_int(row.get("position"), 0),
            competitor_provider_id=str(row["Driver"]["driverId"]),
            q1=row.get("Q1"),
            q2=row.get("Q2"),
            q3=row.get("Q3"),
        )
        for row in rows
    ]


# ---------- Result derivation helpers ----------

def pole_position_holder(rows: list[QualifyingRow]) -> str | None:
    pole = next((row for row in rows if row.position == 1), None)
    return pole.competitor_provider_id if pole else None


def fastest_lap_holder(rows: list[ClassificationRow]) -> str | None:
    holder = next((row for row in rows if row.fastest_lap), None)
    return holder.competitor_provider_id if holder else None


def top_finishers(rows: list[ClassificationRow], limit: int) -> list[str]:
    ranked = sorted((row for row in rows if 0 < row.position <= limit), key=lambda row: row.position)
    return [row.competitor_provider_id for row in ranked]
