"""
backend/tests/test_scoring_handlers.py

Purpose:
    Scoring hand-off: one scoring_queue entry per event, reset to pending on
    every completion; invalid ids are ignored.
"""

from __future__ import annotations

import sys

import pytest
from bson import ObjectId

sys.path.insert(0, "backend")

import app.database as _db
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers import register_event_handlers
from app.services.event_handlers.scoring_handlers import (
    ScoringQueueHooks,
    enqueue_scoring,
    handle_event_completed,
)
from app.services.event_models import EventCompletedEvent
from fake_mongo import FakeDatabase


@pytest.mark.asyncio
async def test_enqueue_is_one_entry_per_event_and_resets_status() -> None:
    db = FakeDatabase()
    event_id = ObjectId()

    assert await enqueue_scoring(event_id, 2024, 5, reason="completed", database=db) is True
    db.scoring_queue.docs[next(iter(db.scoring_queue.docs))]["status"] = "done"
    assert await enqueue_scoring(event_id, 2024, 5, reason="rescore", database=db) is False

    rows = db.scoring_queue.all()
    assert len(rows) == 1
    assert rows[0]["status"] == "pending"
    assert rows[0]["reason"] == "rescore"
    assert rows[0]["event_id"] == event_id


@pytest.mark.asyncio
async def test_event_completed_handler_enqueues(monkeypatch) -> None:
    db = FakeDatabase()
    monkeypatch.setattr(_db, "db", db)
    event_id = ObjectId()

    await handle_event_completed(
        EventCompletedEvent(source="test", race_event_id=str(event_id), season=2024, round=7, rescore=True)
    )

    row = await db.scoring_queue.find_one({"event_id": event_id})
    assert row["round"] == 7
    assert row["reason"] == "rescore"


@pytest.mark.asyncio
async def test_event_completed_handler_ignores_invalid_id(monkeypatch) -> None:
    db = FakeDatabase()
    monkeypatch.setattr(_db, "db", db)

    await handle_event_completed(EventCompletedEvent(source="test", race_event_id="not-an-id", season=2024, round=7))

    assert db.scoring_queue.all() == []


@pytest.mark.asyncio
async def test_scoring_queue_hooks_enqueue_directly() -> None:
    db = FakeDatabase()
    event_id = ObjectId()

    await ScoringQueueHooks(db).on_result_recorded(event_id, {"season": 2024, "round": 3})

    assert (await db.scoring_queue.find_one({"event_id": event_id}))["reason"] == "completed"


def test_register_event_handlers_respects_toggle(monkeypatch) -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    monkeypatch.setattr("app.services.event_handlers.settings.EVENT_HANDLER_SCORING_ENABLED", False)
    register_event_handlers(bus)
    assert bus.stats()["per_handler"] == {}

    monkeypatch.setattr("app.services.event_handlers.settings.EVENT_HANDLER_SCORING_ENABLED", True)
    register_event_handlers(bus)
    assert "event.completed:scoring_enqueue" in bus.stats()["per_handler"]
