"""
backend/tests/fake_mongo.py

Purpose:
    In-memory stand-ins for the Motor collections the sync services use:
    upserts with $set/$setOnInsert (dotted paths included), equality and
    simple operator queries, sort/limit cursors. Every write is appended to
    FakeDatabase.ops so tests can assert on ordering.
"""

from __future__ import annotations

from types import SimpleNamespace

from bson import ObjectId


def _get_nested(doc: dict, dotted_key: str):
    target = doc
    for part in dotted_key.split("."):
        if not isinstance(target, dict):
            return None
        target = target.get(part)
    return target


def _set_nested(doc: dict, dotted_key: str, value) -> None:
    parts = dotted_key.split(".")
    target = doc
    for part in parts[:-1]:
        node = target.get(part)
        if not isinstance(node, dict):
            node = {}
            target[part] = node
        target = node
    target[parts[-1]] = value


def _matches(doc: dict, query: dict | None) -> bool:
    for key, expected in (query or {}).items():
        if key == "$or":
            if not any(_matches(doc, clause) for clause in expected):
                return False
            continue
        actual = _get_nested(doc, key)
        if isinstance(expected, dict) and any(str(op).startswith("$") for op in expected):
            for op, operand in expected.items():
                if op == "$in" and actual not in operand:
                    return False
                if op == "$ne" and actual == operand:
                    return False
                if op == "$exists" and bool(operand) != (actual is not None):
                    return False
                if op in ("$gt", "$gte", "$lt", "$lte"):
                    if actual is None:
                        return False
                    if op == "$gt" and not actual > operand:
                        return False
                    if op == "$gte" and not actual >= operand:
                        return False
                    if op == "$lt" and not actual < operand:
                        return False
                    if op == "$lte" and not actual <= operand:
                        return False
            continue
        if actual != expected:
            return False
    return True


class _Cursor:
    def __init__(self, items: list[dict]):
        self._items = list(items)
        self._limit: int | None = None

    def sort(self, key, direction=1):
        present = [doc for doc in self._items if _get_nested(doc, key) is not None]
        missing = [doc for doc in self._items if _get_nested(doc, key) is None]
        present.sort(key=lambda doc: _get_nested(doc, key), reverse=int(direction) < 0)
        self._items = present + missing
        return self

    def limit(self, value: int):
        self._limit = int(value)
        return self

    async def to_list(self, length=None):
        items = self._items if self._limit is None else self._items[: self._limit]
        return list(items) if length is None else list(items)[: int(length)]


class FakeCollection:
    def __init__(self, name: str, ops: list[tuple]) -> None:
        self.name = name
        self.docs: dict[ObjectId, dict] = {}
        self._ops = ops
        self.fail_next_update: Exception | None = None

    def all(self) -> list[dict]:
        return [dict(doc) for doc in self.docs.values()]

    async def update_one(self, query, update, upsert=False):
        self._ops.append((self.name, "update_one", query, update))
        if self.fail_next_update is not None:
            exc, self.fail_next_update = self.fail_next_update, None
            raise exc
        existing = next((doc for doc in self.docs.values() if _matches(doc, query)), None)
        upserted_id = None
        if existing is None:
            if not upsert:
                return SimpleNamespace(upserted_id=None, matched_count=0, modified_count=0)
            existing = {"_id": query.get("_id", ObjectId())}
            for key, value in query.items():
                if not key.startswith("$") and not isinstance(value, dict):
                    _set_nested(existing, key, value)
            for key, value in (update.get("$setOnInsert") or {}).items():
                _set_nested(existing, key, value)
            self.docs[existing["_id"]] = existing
            upserted_id = existing["_id"]
        for key, value in (update.get("$set") or {}).items():
            _set_nested(existing, key, value)
        matched = 0 if upserted_id is not None else 1
        return SimpleNamespace(upserted_id=upserted_id, matched_count=matched, modified_count=matched)

    async def insert_one(self, doc):
        self._ops.append((self.name, "insert_one", None, doc))
        stored = dict(doc)
        stored.setdefault("_id", ObjectId())
        self.docs[stored["_id"]] = stored
        return SimpleNamespace(inserted_id=stored["_id"])

    async def find_one(self, query=None, _projection=None, sort=None):
        rows = [dict(doc) for doc in self.docs.values() if _matches(doc, query)]
        return rows[0] if rows else None

    def find(self, query=None, _projection=None):
        return _Cursor([dict(doc) for doc in self.docs.values() if _matches(doc, query)])

    async def count_documents(self, query=None):
        return sum(1 for doc in self.docs.values() if _matches(doc, query))


class FakeDatabase:
    def __init__(self) -> None:
        self.ops: list[tuple] = []
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name, self.ops)
        return self._collections[name]

    async def command(self, name: str):
        return {"ok": 1.0}
