"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for all collections.
    Unique indexes enforce the natural keys of every reconciled entity family.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("pitwall.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=2,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Reference entities (natural key = provider code) ----

    await db.teams.create_index("provider_id", unique=True)
    await db.competitors.create_index("provider_id", unique=True)
    await db.competitors.create_index("team_id", sparse=True)
    await db.venues.create_index("provider_id", unique=True)

    # ---- Events + sessions ----

    await db.events.create_index([("season", 1), ("round", 1)], unique=True)
    await db.events.create_index("venue_id")
    await db.events.create_index([("season", 1), ("date", 1)])
    await db.sessions.create_index([("event_id", 1), ("type", 1)], unique=True)
    # Result resolver scan: race sessions not yet completed
    await db.sessions.create_index([("type", 1), ("completed", 1), ("scheduled_at", 1)])

    # ---- Standings (one partial unique key per subject type) ----

    try:
        await db.standings.create_index(
            [("season", 1), ("round", 1), ("type", 1), ("competitor_id", 1)],
            unique=True,
            name="standings_competitor_key",
            partialFilterExpression={"type": "competitor"},
        )
        await db.standings.create_index(
            [("season", 1), ("round", 1), ("type", 1), ("team_id", 1)],
            unique=True,
            name="standings_team_key",
            partialFilterExpression={"type": "team"},
        )
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique standings indexes due to existing duplicates: %s", exc)
    await db.standings.create_index([("season", 1), ("type", 1), ("round", -1), ("position", 1)])

    # ---- Operational ----

    await db.sync_runs.create_index([("kind", 1), ("started_at", -1)])
    await db.sync_runs.create_index([("season", 1), ("started_at", -1)])
    await db.scoring_queue.create_index("event_id", unique=True)
    await db.scoring_queue.create_index([("status", 1), ("requested_at", 1)])

    logger.info("MongoDB indexes ensured")
