"""
backend/app/services/result_ingest_hooks.py

Purpose:
    Hook protocol for side effects once an event's result document and race
    completion flag are durable.

Dependencies:
    - typing
    - app.services.season_sync_types
"""

from __future__ import annotations

from typing import Protocol

from bson import ObjectId

from app.services.season_sync_types import EventResultSummary


class ResultIngestHooks(Protocol):
    async def on_result_recorded(self, event_id: ObjectId, summary: EventResultSummary) -> None:
        ...
