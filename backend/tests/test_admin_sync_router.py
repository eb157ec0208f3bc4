"""
backend/tests/test_admin_sync_router.py

Purpose:
    Admin sync API contract: key guard, request validation, error mapping
    for result ingestion and background season syncs.
"""

from __future__ import annotations

import sys

import pytest
from fastapi import BackgroundTasks, HTTPException
from pydantic import ValidationError

sys.path.insert(0, "backend")

from app.providers.http_client import ProviderUnavailableError
from app.routers import admin_sync
from app.services.event_result_service import (
    EmptyClassificationError,
    EventNotFoundError,
    ResultNotRecordedError,
)
from app.services.season_sync_service import _empty_result


@pytest.mark.asyncio
async def test_sync_key_guard(monkeypatch) -> None:
    monkeypatch.setattr("app.routers.admin_sync.settings.SYNC_API_KEY", "")
    with pytest.raises(HTTPException) as exc:
        await admin_sync.verify_sync_key("anything")
    assert exc.value.status_code == 503

    monkeypatch.setattr("app.routers.admin_sync.settings.SYNC_API_KEY", "s3cret")
    with pytest.raises(HTTPException) as exc:
        await admin_sync.verify_sync_key("wrong")
    assert exc.value.status_code == 403

    await admin_sync.verify_sync_key("s3cret")


def test_request_validation_bounds() -> None:
    with pytest.raises(ValidationError):
        admin_sync.SeasonSyncRequest(season=1949)
    with pytest.raises(ValidationError):
        admin_sync.EventResultRequest(season=2024, round=0)
    with pytest.raises(ValidationError):
        admin_sync.EventResultRequest(season=2024, round=31)
    assert admin_sync.EventResultRequest(season=2024, round=24).round == 24


@pytest.mark.asyncio
async def test_season_sync_inline_returns_result(monkeypatch) -> None:
    async def _fake_run(season, *, trigger="manual"):
        result = _empty_result(season)
        result["per_family_counts"]["teams"] = 10
        return result

    monkeypatch.setattr(admin_sync, "run_season_sync", _fake_run)
    response = await admin_sync.sync_season(admin_sync.SeasonSyncRequest(season=2024), BackgroundTasks(), None)

    assert response["season"] == 2024
    assert response["success"] is True
    assert response["per_family_counts"]["teams"] == 10


@pytest.mark.asyncio
async def test_season_sync_background_is_queued(monkeypatch) -> None:
    async def _never(season, *, trigger="manual"):
        raise AssertionError("must not run inline")

    monkeypatch.setattr(admin_sync, "run_season_sync", _never)
    tasks = BackgroundTasks()
    response = await admin_sync.sync_season(admin_sync.SeasonSyncRequest(season=2024, background=True), tasks, None)

    assert response["status"] == "queued"
    assert len(tasks.tasks) == 1
    assert tasks.tasks[0].kwargs == {"trigger": "admin"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (EventNotFoundError(2024, 99), 404),
        (EmptyClassificationError(2024, 5), 409),
        (ProviderUnavailableError("ergast", "circuit breaker open"), 502),
    ],
)
async def test_results_error_mapping(monkeypatch, error, status_code) -> None:
    async def _fail(season, round, *, trigger="manual", hooks=None):
        raise error

    monkeypatch.setattr(admin_sync, "run_result_ingest", _fail)
    with pytest.raises(HTTPException) as exc:
        await admin_sync.ingest_results(admin_sync.EventResultRequest(season=2024, round=5), None)

    assert exc.value.status_code == status_code


@pytest.mark.asyncio
async def test_rescore_without_result_is_conflict(monkeypatch) -> None:
    async def _fail(season, round, *, trigger="manual"):
        raise ResultNotRecordedError(season, round)

    monkeypatch.setattr(admin_sync, "run_rescore", _fail)
    with pytest.raises(HTTPException) as exc:
        await admin_sync.rescore(admin_sync.EventResultRequest(season=2024, round=5), None)

    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_results_success_returns_summary(monkeypatch) -> None:
    async def _ok(season, round, *, trigger="manual", hooks=None):
        return {"season": season, "round": round, "result_count": 20, "scoring_triggered": True}

    monkeypatch.setattr(admin_sync, "run_result_ingest", _ok)
    response = await admin_sync.ingest_results(admin_sync.EventResultRequest(season=2024, round=5), None)

    assert response["result_count"] == 20
    assert response["scoring_triggered"] is True


@pytest.mark.asyncio
async def test_list_runs_passes_filters(monkeypatch) -> None:
    seen = {}

    async def _recent(*, limit, kind, season):
        seen.update(limit=limit, kind=kind, season=season)
        return [{"id": "abc", "kind": "season_sync", "season": 2024}]

    monkeypatch.setattr(admin_sync.sync_run_log, "recent", _recent)
    response = await admin_sync.list_runs(limit=5, kind="season_sync", season=2024, _=None)

    assert response["count"] == 1
    assert seen == {"limit": 5, "kind": "season_sync", "season": 2024}
