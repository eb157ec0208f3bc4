"""
backend/app/models/f1.py

Purpose:
    Typed candidate records produced by the provider transformers, plus the
    structural models persisted by the sync pipeline (standing rows, the event
    result document).

Dependencies:
    - pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionType(str, Enum):
    fp1 = "fp1"
    fp2 = "fp2"
    fp3 = "fp3"
    sprint_qualifying = "sprint_qualifying"
    sprint = "sprint"
    qualifying = "qualifying"
    race = "race"


class StandingType(str, Enum):
    competitor = "competitor"
    team = "team"


# ---------------------------------------------------------------------------
# Candidate records (transformer output)
# ---------------------------------------------------------------------------


class TeamRecord(BaseModel):
    provider_id: str
    name: str
    nationality: str = ""


class CompetitorRecord(BaseModel):
    provider_id: str
    code: str
    number: Optional[int] = None
    first_name: str
    last_name: str
    nationality: str = ""
    date_of_birth: Optional[datetime] = None


class VenueRecord(BaseModel):
    provider_id: str
    name: str
    country: str = ""
    city: str = ""


class SessionRecord(BaseModel):
    type: SessionType
    scheduled_at: datetime


class EventRecord(BaseModel):
    season: int
    round: int
    name: str
    date: datetime
    has_sprint: bool = False
    venue_provider_id: str
    sessions: list[SessionRecord] = Field(default_factory=list)


class StandingEntry(BaseModel):
    subject_provider_id: str
    position: int
    points: float = 0.0
    wins: int = 0
    # Competitor standings only: first team listed for the competitor that season.
    team_provider_id: Optional[str] = None


class StandingsSnapshot(BaseModel):
    """Latest standings list of a season; the provider reports which round it reflects."""
    season: int
    round: int
    type: StandingType
    entries: list[StandingEntry] = Field(default_factory=list)


class ClassificationRow(BaseModel):
    position: int
    competitor_provider_id: str
    team_provider_id: Optional[str] = None
    points: float = 0.0
    grid: Optional[int] = None
    laps: Optional[int] = None
    status: str = ""
    time: Optional[str] = None
    fastest_lap: bool = False
    fastest_lap_time: Optional[str] = None


class QualifyingRow(BaseModel):
    position: int
    competitor_provider_id: str
    q1: Optional[str] = None
    q2: Optional[str] = None
    q3: Optional[str] = None


# ---------------------------------------------------------------------------
# Persisted structures
# ---------------------------------------------------------------------------


class StandingRow(BaseModel):
    """Standing row as written to the store.

    Exactly one subject reference is populated and it matches ``type``.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    season: int
    round: int
    type: StandingType
    competitor_id: Optional[ObjectId] = None
    team_id: Optional[ObjectId] = None
    position: int
    points: float = 0.0
    wins: int = 0

    @model_validator(mode="after")
    def _check_subject(self) -> "StandingRow":
        if self.type == StandingType.competitor:
            if self.competitor_id is None or self.team_id is not None:
                raise ValueError("competitor standing requires competitor_id and no team_id")
        elif self.team_id is None or self.competitor_id is not None:
            raise ValueError("team standing requires team_id and no competitor_id")
        return self

    def natural_key(self) -> dict:
        return {
            "season": self.season,
            "round": self.round,
            "type": self.type.value,
            "competitor_id": self.competitor_id,
            "team_id": self.team_id,
        }


class ResultDocument(BaseModel):
    """Merged race outcome attached to an event as one opaque field."""
    positions: list[str] = Field(default_factory=list)
    pole: Optional[str] = None
    fastest_lap: Optional[str] = None
    full_results: list[ClassificationRow] = Field(default_factory=list)
