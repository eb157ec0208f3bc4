"""
backend/app/services/fk_resolver.py

Purpose:
    Read-only translation of provider natural keys into internal ObjectIds of
    already-reconciled entities. Absence is reported as None; callers decide
    whether a missing reference is tolerable.

Dependencies:
    - app.database
    - app.services.entity_reconciler
"""

from __future__ import annotations

from typing import Any

from bson import ObjectId

import app.database as _db
from app.services.entity_reconciler import FAMILY_SPECS, EntityFamily, build_natural_key


class ForeignKeyResolver:
    def __init__(self, database=None) -> None:
        self._db = database

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    async def lookup(
        self,
        family: EntityFamily,
        natural_key: Any,
        projection: dict[str, int] | None = None,
    ) -> dict[str, Any] | None:
        """Return the stored document (projected) for a natural key, or None."""
        if natural_key is None or natural_key == "":
            return None
        key = build_natural_key(family, natural_key)
        collection = getattr(self.db, FAMILY_SPECS[family].collection)
        return await collection.find_one(key, projection or {"_id": 1})

    async def resolve_id(self, family: EntityFamily, natural_key: Any) -> ObjectId | None:
        doc = await self.lookup(family, natural_key)
        return doc["_id"] if doc else None

    async def resolve_cached(
        self,
        family: EntityFamily,
        natural_key: str | None,
        table: dict[str, ObjectId],
    ) -> ObjectId | None:
        """Resolve through a step lookup table first, then the store.

        Hits from the store are written back into ``table``.
        """
        if not natural_key:
            return None
        known = table.get(natural_key)
        if known is not None:
            return known
        resolved = await self.resolve_id(family, natural_key)
        if resolved is not None:
            table[natural_key] = resolved
        return resolved


fk_resolver = ForeignKeyResolver()
