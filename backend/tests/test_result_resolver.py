"""
backend/tests/test_result_resolver.py

Purpose:
    Result resolver selection window and per-race error handling.
"""

from __future__ import annotations

import sys
from datetime import timedelta

import pytest
from bson import ObjectId

sys.path.insert(0, "backend")

import app.database as _db
from app.services.event_result_service import EmptyClassificationError, EventNotFoundError
from app.utils import utcnow
from app.workers import result_resolver as resolver
from fake_mongo import FakeDatabase


async def _race(db: FakeDatabase, season: int, round: int, *, hours_ago: float, completed: bool = False) -> None:
    event_id = ObjectId()
    await db.events.insert_one({"_id": event_id, "season": season, "round": round})
    await db.sessions.insert_one(
        {
            "event_id": event_id,
            "type": "race",
            "completed": completed,
            "scheduled_at": utcnow() - timedelta(hours=hours_ago),
        }
    )
    await db.sessions.insert_one(
        {"event_id": event_id, "type": "qualifying", "completed": False, "scheduled_at": utcnow() - timedelta(hours=hours_ago + 24)}
    )


class _FakeIngestor:
    def __init__(self, failures: dict[tuple[int, int], Exception] | None = None):
        self.failures = failures or {}
        self.calls: list[tuple[int, int]] = []

    async def ingest_event_result(self, season, round, *, hooks=None):
        self.calls.append((season, round))
        if (season, round) in self.failures:
            raise self.failures[(season, round)]
        return {
            "season": season,
            "round": round,
            "event_id": "x",
            "result_count": 20,
            "pole": None,
            "fastest_lap": None,
            "session_completed": True,
            "scoring_triggered": True,
        }


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDatabase()
    monkeypatch.setattr(_db, "db", db)
    monkeypatch.setattr("app.workers.result_resolver.settings.RESULT_RESOLVER_GRACE_HOURS", 3)
    monkeypatch.setattr("app.workers.result_resolver.settings.RESULT_RESOLVER_LOOKBACK_DAYS", 14)
    return db


@pytest.mark.asyncio
async def test_find_pending_races_window(fake_db) -> None:
    await _race(fake_db, 2024, 5, hours_ago=4)
    await _race(fake_db, 2024, 4, hours_ago=24 * 7)
    await _race(fake_db, 2024, 6, hours_ago=1)
    await _race(fake_db, 2024, 3, hours_ago=24 * 30)
    await _race(fake_db, 2024, 2, hours_ago=24 * 2, completed=True)

    pending = await resolver.find_pending_races()

    assert pending == [{"season": 2024, "round": 4}, {"season": 2024, "round": 5}]


@pytest.mark.asyncio
async def test_resolve_results_logs_runs_and_survives_failures(fake_db, monkeypatch) -> None:
    await _race(fake_db, 2024, 4, hours_ago=24 * 7)
    await _race(fake_db, 2024, 5, hours_ago=5)
    ingestor = _FakeIngestor({(2024, 4): EmptyClassificationError(2024, 4)})
    monkeypatch.setattr(resolver, "event_result_ingestor", ingestor)

    await resolver.resolve_results()

    assert ingestor.calls == [(2024, 4), (2024, 5)]
    runs = {run["round"]: run for run in fake_db.sync_runs.all()}
    assert runs[4]["status"] == "failed"
    assert runs[4]["error"]["type"] == "EmptyClassificationError"
    assert runs[5]["status"] == "succeeded"
    assert runs[5]["trigger"] == "scheduler"


@pytest.mark.asyncio
async def test_run_result_ingest_reraises_precondition_errors(fake_db, monkeypatch) -> None:
    monkeypatch.setattr(resolver, "event_result_ingestor", _FakeIngestor({(2024, 99): EventNotFoundError(2024, 99)}))

    with pytest.raises(EventNotFoundError):
        await resolver.run_result_ingest(2024, 99)

    assert fake_db.sync_runs.all()[0]["status"] == "failed"
