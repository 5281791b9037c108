import pytest
from bson import ObjectId

from database import Limit, MemoryStore, OrderBy, Where, _key, eq
from errors import NotFound


def test_insert_get_and_custom_id() -> None:
    store = MemoryStore()
    generated = store.insert("things", {"name": "a"})
    assert ObjectId.is_valid(generated)
    assert store.insert("things", {"name": "b"}, "fixed-id") == "fixed-id"

    assert store.get_one("things", generated) == {"id": generated, "name": "a"}
    assert store.get_one("things", "fixed-id")["name"] == "b"
    assert store.get_one("things", "missing") is None
    assert len(store.get_all("things")) == 2


def test_documents_are_copied() -> None:
    store = MemoryStore()
    data = {"tags": ["x"]}
    doc_id = store.insert("things", data)
    data["tags"].append("y")
    fetched = store.get_one("things", doc_id)
    fetched["tags"].append("z")
    assert store.get_one("things", doc_id)["tags"] == ["x"]


def test_update_merges_and_requires_document() -> None:
    store = MemoryStore()
    doc_id = store.insert("things", {"a": 1, "b": 2})
    store.update("things", doc_id, {"b": 3, "c": 4})
    assert store.get_one("things", doc_id) == {"id": doc_id, "a": 1, "b": 3, "c": 4}
    with pytest.raises(NotFound):
        store.update("things", "nope", {"a": 1})


def test_delete_is_silent_for_missing_documents() -> None:
    store = MemoryStore()
    doc_id = store.insert("things", {"a": 1})
    store.delete("things", doc_id)
    store.delete("things", doc_id)
    assert store.get_all("things") == []


def test_query_filters_are_anded() -> None:
    store = MemoryStore()
    store.insert("scores", {"user": "u1", "value": 10, "tags": ["a"]})
    store.insert("scores", {"user": "u1", "value": 30, "tags": ["b"]})
    store.insert("scores", {"user": "u2", "value": 20, "tags": ["a", "b"]})

    assert len(store.query("scores", [eq("user", "u1")])) == 2
    assert [d["value"] for d in store.query("scores", [eq("user", "u1"), Where("value", ">", 15)])] == [30]
    assert len(store.query("scores", [Where("user", "!=", "u1")])) == 1
    assert len(store.query("scores", [Where("value", "in", [10, 20])])) == 2
    assert len(store.query("scores", [Where("value", "not-in", [10, 20])])) == 1
    assert len(store.query("scores", [Where("tags", "array-contains", "b")])) == 2
    assert len(store.query("scores", [Where("value", "<=", 20)])) == 2


def test_query_order_and_limit() -> None:
    store = MemoryStore()
    for value in (2, 3, 1):
        store.insert("nums", {"value": value})
    store.insert("nums", {"other": True})

    desc = store.query("nums", [OrderBy("value", "desc")])
    assert [d["value"] for d in desc] == [3, 2, 1]
    asc = store.query("nums", [OrderBy("value"), Limit(2)])
    assert [d["value"] for d in asc] == [1, 2]


def test_query_rejects_unsupported_shapes() -> None:
    store = MemoryStore()
    with pytest.raises(ValueError):
        store.query("nums", [OrderBy("a"), OrderBy("b")])
    with pytest.raises(ValueError):
        Where("a", "like", "x")


def test_mongo_keys() -> None:
    oid = str(ObjectId())
    assert _key(oid) == ObjectId(oid)
    assert _key("custom-uid") == "custom-uid"
