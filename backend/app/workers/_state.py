"""Persistent worker state: last successful run per worker key.

Survives restarts so a redeploy does not immediately re-sync a season that
was refreshed minutes ago. Stored in the `worker_state` collection.
"""

from datetime import datetime, timedelta

import app.database as _db
from app.utils import ensure_utc, utcnow


def _store(database=None):
    return database if database is not None else _db.db


async def get_synced_at(worker_id: str, *, database=None) -> datetime | None:
    doc = await _store(database).worker_state.find_one({"_id": worker_id})
    return doc.get("synced_at") if doc else None


async def set_synced(worker_id: str, *, database=None, **extra) -> None:
    """Mark a worker key as just synced; extra fields are stored alongside."""
    await _store(database).worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"synced_at": utcnow(), **extra}},
        upsert=True,
    )


async def recently_synced(worker_id: str, max_age: timedelta, *, database=None) -> bool:
    last = await get_synced_at(worker_id, database=database)
    if not last:
        return False
    return (utcnow() - ensure_utc(last)) < max_age
