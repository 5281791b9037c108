"""
Document-store gateway.

Services talk to named collections through a small, uniform surface:
get_all / get_one / insert / update / delete / query. Query conditions are
ANDed field filters with at most one sort key and an optional limit, which is
all the backing store is assumed to support. There are no server-side joins;
callers fetch parents first and then their children.

Two backends implement the surface: MongoStore (pymongo, configured from
DATABASE_URL / DATABASE_NAME) and MemoryStore (in-process, used by the tests
and by STORE_BACKEND=memory for local runs).
"""

import copy
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import NotFound, TransientIO

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "educorp")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def now_utc():
    return datetime.now(timezone.utc)


# -----------------------------
# Query conditions
# -----------------------------
OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains")


@dataclass(frozen=True)
class Where:
    field: str
    operator: str
    value: Any

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported operator {self.operator!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: str = "asc"


@dataclass(frozen=True)
class Limit:
    value: int


Condition = Union[Where, OrderBy, Limit]


def eq(field: str, value: Any) -> Where:
    return Where(field, "==", value)


def _split(conditions: Iterable[Condition]):
    wheres: List[Where] = []
    order: Optional[OrderBy] = None
    limit: Optional[int] = None
    for cond in conditions:
        if isinstance(cond, Where):
            wheres.append(cond)
        elif isinstance(cond, OrderBy):
            if order is not None:
                raise ValueError("Only one sort key is supported")
            order = cond
        elif isinstance(cond, Limit):
            limit = cond.value
        else:
            raise ValueError(f"Unknown query condition {cond!r}")
    return wheres, order, limit


# -----------------------------
# Mongo backend
# -----------------------------
_MONGO_OPS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
    "not-in": "$nin",
}


def _key(id_str: str):
    return ObjectId(id_str) if ObjectId.is_valid(id_str) else id_str


def _out(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["id"] = str(doc.pop("_id"))
    return doc


class MongoStore:
    def __init__(self, database):
        self.db = database

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        try:
            return [_out(d) for d in self.db[collection].find({})]
        except PyMongoError as e:
            raise TransientIO(f"{collection}: {e}") from e

    def get_one(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.db[collection].find_one({"_id": _key(id)})
        except PyMongoError as e:
            raise TransientIO(f"{collection}/{id}: {e}") from e
        return _out(doc) if doc else None

    def insert(self, collection: str, data: Dict[str, Any], id: Optional[str] = None) -> str:
        doc = {k: v for k, v in data.items() if k != "id"}
        try:
            if id:
                self.db[collection].replace_one({"_id": _key(id)}, doc, upsert=True)
                return id
            res = self.db[collection].insert_one(doc)
        except PyMongoError as e:
            raise TransientIO(f"{collection}: {e}") from e
        return str(res.inserted_id)

    def update(self, collection: str, id: str, patch: Dict[str, Any]) -> None:
        fields = {k: v for k, v in patch.items() if k != "id"}
        try:
            res = self.db[collection].update_one({"_id": _key(id)}, {"$set": fields})
        except PyMongoError as e:
            raise TransientIO(f"{collection}/{id}: {e}") from e
        if res.matched_count == 0:
            raise NotFound(f"{collection}/{id} not found")

    def delete(self, collection: str, id: str) -> None:
        try:
            self.db[collection].delete_one({"_id": _key(id)})
        except PyMongoError as e:
            raise TransientIO(f"{collection}/{id}: {e}") from e

    def query(self, collection: str, conditions: Iterable[Condition] = ()) -> List[Dict[str, Any]]:
        wheres, order, limit = _split(conditions)
        flt: Dict[str, Dict[str, Any]] = {}
        for w in wheres:
            ops = flt.setdefault(w.field, {})
            if w.operator == "array-contains":
                ops.setdefault("$all", []).append(w.value)
            else:
                ops[_MONGO_OPS[w.operator]] = w.value
        try:
            cursor = self.db[collection].find(flt)
            if order:
                cursor = cursor.sort(order.field, DESCENDING if order.direction == "desc" else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_out(d) for d in cursor]
        except PyMongoError as e:
            raise TransientIO(f"{collection}: {e}") from e


# -----------------------------
# In-memory backend
# -----------------------------
def _matches(doc: Dict[str, Any], w: Where) -> bool:
    value = doc.get(w.field)
    if w.operator == "==":
        return value == w.value
    if w.operator == "!=":
        return value != w.value
    if w.operator == "in":
        return value in w.value
    if w.operator == "not-in":
        return value not in w.value
    if w.operator == "array-contains":
        return isinstance(value, list) and w.value in value
    if value is None:
        return False
    try:
        if w.operator == "<":
            return value < w.value
        if w.operator == "<=":
            return value <= w.value
        if w.operator == ">":
            return value > w.value
        return value >= w.value
    except TypeError:
        return False


class MemoryStore:
    """Dict-backed store with the same surface as MongoStore.

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.name = "memory"

    def _col(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def list_collection_names(self) -> List[str]:
        return [name for name, docs in self._collections.items() if docs]

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        return [{**copy.deepcopy(d), "id": k} for k, d in self._col(collection).items()]

    def get_one(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        doc = self._col(collection).get(id)
        return {**copy.deepcopy(doc), "id": id} if doc is not None else None

    def insert(self, collection: str, data: Dict[str, Any], id: Optional[str] = None) -> str:
        new_id = id or str(ObjectId())
        self._col(collection)[new_id] = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
        return new_id

    def update(self, collection: str, id: str, patch: Dict[str, Any]) -> None:
        doc = self._col(collection).get(id)
        if doc is None:
            raise NotFound(f"{collection}/{id} not found")
        doc.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))

    def delete(self, collection: str, id: str) -> None:
        self._col(collection).pop(id, None)

    def query(self, collection: str, conditions: Iterable[Condition] = ()) -> List[Dict[str, Any]]:
        wheres, order, limit = _split(conditions)
        docs = [d for d in self.get_all(collection) if all(_matches(d, w) for w in wheres)]
        if order:
            present = [d for d in docs if d.get(order.field) is not None]
            present.sort(key=lambda d: d[order.field], reverse=order.direction == "desc")
            docs = present
        if limit:
            docs = docs[:limit]
        return docs


Store = Union[MongoStore, MemoryStore]
