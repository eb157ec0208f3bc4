"""
backend/app/services/entity_reconciler.py

Purpose:
    Generic upsert-by-natural-key primitive shared by every sync step. A
    natural key maps to exactly one document; the first reconciliation creates
    it with a fresh ObjectId, later ones only $set the mutable fields.

Dependencies:
    - app.database
    - pymongo
    - app.utils
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.models.f1 import StandingType
from app.utils import utcnow

logger = logging.getLogger("pitwall.entity_reconciler")

_PROTECTED_FIELDS = {"_id", "created_at", "updated_at"}


class EntityFamily(str, Enum):
    team = "team"
    competitor = "competitor"
    venue = "venue"
    event = "event"
    session = "session"
    standing = "standing"


class InvalidEntityError(ValueError):
    """Record violates a structural invariant of its family and was not written."""


def _check_standing(key: dict[str, Any], _fields: dict[str, Any]) -> None:
    kind = key.get("type")
    competitor_id = key.get("competitor_id")
    team_id = key.get("team_id")
    if kind == StandingType.competitor.value:
        ok = competitor_id is not None and team_id is None
    elif kind == StandingType.team.value:
        ok = team_id is not None and competitor_id is None
    else:
        ok = False
    if not ok:
        raise InvalidEntityError(
            f"standing subject mismatch: type={kind!r} competitor_id={competitor_id} team_id={team_id}"
        )


@dataclass(frozen=True)
class FamilySpec:
    collection: str
    key_fields: tuple[str, ...]
    validator: Callable[[dict[str, Any], dict[str, Any]], None] | None = None


FAMILY_SPECS: dict[EntityFamily, FamilySpec] = {
    EntityFamily.team: FamilySpec("teams", ("provider_id",)),
    EntityFamily.competitor: FamilySpec("competitors", ("provider_id",)),
    EntityFamily.venue: FamilySpec("venues", ("provider_id",)),
    EntityFamily.event: FamilySpec("events", ("season", "round")),
    EntityFamily.session: FamilySpec("sessions", ("event_id", "type")),
    EntityFamily.standing: FamilySpec(
        "standings",
        ("season", "round", "type", "competitor_id", "team_id"),
        validator=_check_standing,
    ),
}


def build_natural_key(family: EntityFamily, natural_key: Any) -> dict[str, Any]:
    """Normalize a natural key into a filter dict.

    Single-field families accept the bare value; composite families need a
    mapping carrying every key field.
    """
    spec = FAMILY_SPECS[family]
    if not isinstance(natural_key, dict):
        if len(spec.key_fields) != 1:
            raise ValueError(f"{family.value} needs a composite natural key {spec.key_fields}")
        natural_key = {spec.key_fields[0]: natural_key}
    missing = [name for name in spec.key_fields if name not in natural_key]
    if missing:
        raise ValueError(f"{family.value} natural key missing fields: {missing}")
    key: dict[str, Any] = {}
    for name in spec.key_fields:
        value = natural_key[name]
        key[name] = value.value if isinstance(value, Enum) else value
    return key


@dataclass(frozen=True)
class ReconcileOutcome:
    entity_id: ObjectId
    created: bool


class EntityReconciler:
    """Create-or-update by natural key with stable internal identity.

    Calls for the same natural key are serialized inside this process; calls
    for different keys run freely.
    """

    def __init__(self, database=None) -> None:
        self._db = database
        self._key_locks: weakref.WeakValueDictionary[tuple, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    def _lock_for(self, family: EntityFamily, key: dict[str, Any]) -> asyncio.Lock:
        lock_key = (family.value, *(str(key[name]) for name in FAMILY_SPECS[family].key_fields))
        lock = self._key_locks.get(lock_key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[lock_key] = lock
        return lock

    async def reconcile(self, family: EntityFamily, natural_key: Any, fields: dict[str, Any]) -> ObjectId:
        outcome = await self.upsert(family, natural_key, fields)
        return outcome.entity_id

    async def upsert(
        self,
        family: EntityFamily,
        natural_key: Any,
        fields: dict[str, Any],
        *,
        on_insert: dict[str, Any] | None = None,
    ) -> ReconcileOutcome:
        """Reconcile one record; ``on_insert`` holds defaults written only on creation."""
        spec = FAMILY_SPECS[family]
        key = build_natural_key(family, natural_key)
        mutable = {
            name: (value.value if isinstance(value, Enum) else value)
            for name, value in (fields or {}).items()
            if name not in _PROTECTED_FIELDS and name not in spec.key_fields
        }
        if spec.validator is not None:
            spec.validator(key, mutable)
        defaults = {
            name: value
            for name, value in (on_insert or {}).items()
            if name not in mutable and name not in _PROTECTED_FIELDS and name not in spec.key_fields
        }

        collection = getattr(self.db, spec.collection)
        lock = self._lock_for(family, key)
        async with lock:
            now = utcnow()
            update = {
                "$set": {**mutable, "updated_at": now},
                "$setOnInsert": {**key, **defaults, "created_at": now},
            }
            try:
                result = await collection.update_one(key, update, upsert=True)
            except DuplicateKeyError:
                # Another process inserted the same key between our match and insert.
                logger.info("Upsert race on %s %s, retrying as update", family.value, key)
                result = await collection.update_one(key, {"$set": update["$set"]}, upsert=False)

            if result.upserted_id is not None:
                return ReconcileOutcome(entity_id=result.upserted_id, created=True)

            doc = await collection.find_one(key, {"_id": 1})
            if doc is None:
                raise RuntimeError(f"{family.value} {key} vanished during reconciliation")
            return ReconcileOutcome(entity_id=doc["_id"], created=False)

    async def update_where(
        self,
        family: EntityFamily,
        entity_id: ObjectId,
        condition: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        """Atomically $set ``fields`` only while the stored document matches ``condition``."""
        spec = FAMILY_SPECS[family]
        changes = {name: value for name, value in fields.items() if name not in _PROTECTED_FIELDS and name not in spec.key_fields}
        collection = getattr(self.db, spec.collection)
        result = await collection.update_one(
            {"_id": entity_id, **condition},
            {"$set": {**changes, "updated_at": utcnow()}},
        )
        return result.matched_count > 0


entity_reconciler = EntityReconciler()
