"""
backend/app/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. Payloads are
    ID-first: subscribers read the durable state back from the store.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.utils import ensure_utc, utcnow

EventType = Literal[
    "season.synced",
    "event.completed",
]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class SeasonSyncedEvent(BaseEvent):
    event_type: Literal["season.synced"] = "season.synced"
    season: int
    success: bool
    per_family_counts: dict[str, int] = Field(default_factory=dict)
    error_count: int = 0
    warning_count: int = 0


class EventCompletedEvent(BaseEvent):
    """Race result and completion flag are durable for this race weekend."""

    event_type: Literal["event.completed"] = "event.completed"
    race_event_id: str  # events._id of the race weekend
    season: int
    round: int
    result_count: int = 0
    rescore: bool = False


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
