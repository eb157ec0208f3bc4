"""
backend/app/services/sync_run_log.py

Purpose:
    Persistent run log for season syncs and result ingestions started through
    the worker entrypoints (scheduler, admin API, CLI). One sync_runs document
    per invocation: queued -> running -> succeeded | partial | failed.

Dependencies:
    - app.database
    - app.utils
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from bson import ObjectId

import app.database as _db
from app.utils import utcnow

logger = logging.getLogger("pitwall.sync_run_log")

RunKind = Literal["season_sync", "event_result", "rescore"]
RunStatus = Literal["running", "succeeded", "partial", "failed"]


class SyncRunLog:
    def __init__(self, database=None) -> None:
        self._db = database

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    async def start(
        self,
        kind: RunKind,
        *,
        season: int,
        round: int | None = None,
        trigger: str = "manual",
    ) -> ObjectId:
        now = utcnow()
        doc = {
            "kind": kind,
            "season": int(season),
            "round": int(round) if round is not None else None,
            "trigger": trigger,
            "status": "running",
            "started_at": now,
            "finished_at": None,
            "summary": None,
            "error": None,
            "updated_at": now,
        }
        result = await self.db.sync_runs.insert_one(doc)
        return result.inserted_id

    async def finish(
        self,
        run_id: ObjectId,
        status: RunStatus,
        *,
        summary: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        now = utcnow()
        update: dict[str, Any] = {"status": status, "finished_at": now, "updated_at": now}
        if summary is not None:
            update["summary"] = summary
        if error is not None:
            update["error"] = {"message": str(error), "type": type(error).__name__}
        await self.db.sync_runs.update_one({"_id": run_id}, {"$set": update})
        logger.info("Sync run %s finished status=%s", run_id, status)

    async def recent(
        self,
        *,
        limit: int = 20,
        kind: RunKind | None = None,
        season: int | None = None,
    ) -> list[dict[str, Any]]:
        query: dict[str, Any] = {}
        if kind:
            query["kind"] = kind
        if season is not None:
            query["season"] = int(season)
        cursor = self.db.sync_runs.find(query).sort("started_at", -1).limit(max(1, min(int(limit), 200)))
        rows = await cursor.to_list(length=None)
        for row in rows:
            row["id"] = str(row.pop("_id"))
        return rows


sync_run_log = SyncRunLog()
