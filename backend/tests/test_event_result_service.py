"""
backend/tests/test_event_result_service.py

Purpose:
    Result ingestion contract:
    - result document shape (top-N, pole, fastest lap, full results)
    - result written before the race session is marked completed
    - qualifying failure degrades pole only
    - missing event / empty classification raise and change nothing
    - re-ingestion overwrites, hooks and bus hand-off
"""

from __future__ import annotations

import sys

import pytest
from bson import ObjectId

sys.path.insert(0, "backend")

from app.models.f1 import ClassificationRow, QualifyingRow
from app.providers.http_client import ProviderUnavailableError
from app.services.event_bus import InMemoryEventBus
from app.services.event_result_service import (
    EmptyClassificationError,
    EventNotFoundError,
    EventResultIngestor,
    ResultNotRecordedError,
)
from fake_mongo import FakeDatabase


def _classification(n: int, fastest: int = 3, prefix: str = "driver") -> list[ClassificationRow]:
    return [
        ClassificationRow(
            position=i + 1,
            competitor_provider_id=f"{prefix}_{i}",
            team_provider_id=f"team_{i // 2}",
            points=float(max(0, 25 - i)),
            fastest_lap=(i == fastest),
        )
        for i in range(n)
    ]


class _FakeResultsClient:
    def __init__(self, race=None, qualifying=None):
        self.race = race if race is not None else _classification(20)
        self.qualifying = qualifying if qualifying is not None else [
            QualifyingRow(position=1, competitor_provider_id="driver_1"),
            QualifyingRow(position=2, competitor_provider_id="driver_0"),
        ]
        self.qualifying_error: Exception | None = None
        self.race_error: Exception | None = None

    async def get_race_classification(self, season, round):
        if self.race_error is not None:
            raise self.race_error
        return list(self.race)

    async def get_qualifying_classification(self, season, round):
        if self.qualifying_error is not None:
            raise self.qualifying_error
        return list(self.qualifying)


class _RecordingHooks:
    def __init__(self, db=None):
        self.db = db
        self.calls: list[tuple[ObjectId, dict, bool]] = []

    async def on_result_recorded(self, event_id, summary):
        result_present = False
        completed = False
        if self.db is not None:
            event = await self.db.events.find_one({"_id": event_id})
            session = await self.db.sessions.find_one({"event_id": event_id, "type": "race"})
            result_present = bool(event.get("result"))
            completed = bool(session and session.get("completed"))
        self.calls.append((event_id, dict(summary), result_present and completed))


async def _seed_event(db: FakeDatabase, season: int = 2024, round: int = 5) -> ObjectId:
    event_id = ObjectId()
    await db.events.insert_one({"_id": event_id, "season": season, "round": round, "name": "GP", "result": None})
    await db.sessions.insert_one({"event_id": event_id, "type": "qualifying", "completed": False})
    await db.sessions.insert_one({"event_id": event_id, "type": "race", "completed": False})
    db.ops.clear()
    return event_id


def _bus() -> InMemoryEventBus:
    return InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)


@pytest.mark.asyncio
async def test_ingest_builds_result_document_and_completes_race() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)
    ingestor = EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus(), top_n=10)

    summary = await ingestor.ingest_event_result(2024, 5)

    assert summary["result_count"] == 20
    assert summary["pole"] == "driver_1"
    assert summary["fastest_lap"] == "driver_3"
    assert summary["session_completed"] is True
    assert summary["event_id"] == str(event_id)
    event = await db.events.find_one({"_id": event_id})
    result = event["result"]
    assert result["positions"] == [f"driver_{i}" for i in range(10)]
    assert result["pole"] == "driver_1"
    assert result["fastest_lap"] == "driver_3"
    assert len(result["full_results"]) == 20
    race = await db.sessions.find_one({"event_id": event_id, "type": "race"})
    qualifying = await db.sessions.find_one({"event_id": event_id, "type": "qualifying"})
    assert race["completed"] is True
    assert qualifying["completed"] is False


@pytest.mark.asyncio
async def test_result_is_written_before_session_completion() -> None:
    db = FakeDatabase()
    await _seed_event(db)
    ingestor = EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus())

    await ingestor.ingest_event_result(2024, 5)

    writes = [(name, op) for name, op, _, _ in db.ops]
    assert writes == [("events", "update_one"), ("sessions", "update_one")]
    assert "result" in db.ops[0][3]["$set"]
    assert db.ops[1][3]["$set"]["completed"] is True


@pytest.mark.asyncio
async def test_qualifying_failure_records_absent_pole() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)
    client = _FakeResultsClient()
    client.qualifying_error = ProviderUnavailableError("ergast", "circuit breaker open")

    summary = await EventResultIngestor(client=client, database=db, bus=_bus()).ingest_event_result(2024, 5)

    assert summary["pole"] is None
    assert summary["fastest_lap"] == "driver_3"
    event = await db.events.find_one({"_id": event_id})
    assert event["result"]["pole"] is None
    assert (await db.sessions.find_one({"event_id": event_id, "type": "race"}))["completed"] is True


@pytest.mark.asyncio
async def test_missing_event_raises_and_touches_nothing() -> None:
    db = FakeDatabase()
    await _seed_event(db)
    ingestor = EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus())

    with pytest.raises(EventNotFoundError):
        await ingestor.ingest_event_result(2024, 99)

    assert db.ops == []
    assert all(session["completed"] is False for session in db.sessions.all())


@pytest.mark.asyncio
async def test_empty_classification_raises_and_touches_nothing() -> None:
    db = FakeDatabase()
    await _seed_event(db)
    ingestor = EventResultIngestor(client=_FakeResultsClient(race=[]), database=db, bus=_bus())

    with pytest.raises(EmptyClassificationError):
        await ingestor.ingest_event_result(2024, 5)

    assert db.ops == []


@pytest.mark.asyncio
async def test_race_transport_error_propagates() -> None:
    db = FakeDatabase()
    await _seed_event(db)
    client = _FakeResultsClient()
    client.race_error = ProviderUnavailableError("ergast", "network failure")

    with pytest.raises(ProviderUnavailableError):
        await EventResultIngestor(client=client, database=db, bus=_bus()).ingest_event_result(2024, 5)

    assert db.ops == []


@pytest.mark.asyncio
async def test_reingest_overwrites_result_document() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)
    client = _FakeResultsClient()
    ingestor = EventResultIngestor(client=client, database=db, bus=_bus(), top_n=3)
    await ingestor.ingest_event_result(2024, 5)

    client.race = _classification(18, fastest=0, prefix="amended")
    await ingestor.ingest_event_result(2024, 5)

    result = (await db.events.find_one({"_id": event_id}))["result"]
    assert result["positions"] == ["amended_0", "amended_1", "amended_2"]
    assert result["fastest_lap"] == "amended_0"
    assert len(result["full_results"]) == 18
    assert len(db.events.all()) == 1


@pytest.mark.asyncio
async def test_hooks_run_after_durable_writes() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)
    hooks = _RecordingHooks(db)

    summary = await EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus()).ingest_event_result(
        2024, 5, hooks=hooks,
    )

    assert summary["scoring_triggered"] is True
    assert len(hooks.calls) == 1
    called_id, called_summary, durable = hooks.calls[0]
    assert called_id == event_id
    assert called_summary["result_count"] == 20
    assert durable is True


@pytest.mark.asyncio
async def test_failing_hook_does_not_undo_ingestion() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)

    class _Broken:
        async def on_result_recorded(self, event_id, summary):
            raise RuntimeError("scorer down")

    summary = await EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus()).ingest_event_result(
        2024, 5, hooks=_Broken(),
    )

    assert summary["scoring_triggered"] is False
    assert (await db.events.find_one({"_id": event_id}))["result"] is not None


@pytest.mark.asyncio
async def test_running_bus_receives_event_completed() -> None:
    db = FakeDatabase()
    event_id = await _seed_event(db)
    bus = _bus()
    await bus.start()
    try:
        summary = await EventResultIngestor(client=_FakeResultsClient(), database=db, bus=bus).ingest_event_result(2024, 5)
    finally:
        await bus.stop()

    assert summary["scoring_triggered"] is True
    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["per_event_type"]["event.completed"]["published"] == 1
    assert summary["event_id"] == str(event_id)


@pytest.mark.asyncio
async def test_trigger_scoring_requires_stored_result() -> None:
    db = FakeDatabase()
    await _seed_event(db)
    ingestor = EventResultIngestor(client=_FakeResultsClient(), database=db, bus=_bus())

    with pytest.raises(ResultNotRecordedError):
        await ingestor.trigger_scoring(2024, 5)

    await ingestor.ingest_event_result(2024, 5)
    hooks = _RecordingHooks()
    summary = await ingestor.trigger_scoring(2024, 5, hooks=hooks)

    assert summary["scoring_triggered"] is True
    assert summary["pole"] == "driver_1"
    assert summary["session_completed"] is True
    assert len(hooks.calls) == 1
