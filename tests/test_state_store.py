from __future__ import annotations

from typing import Any

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from tradeplan.storage.state_store import InMemoryStateStore, MongoStateStore
from tradeplan.utils.error_taxonomy import ConfigError, StorageError


class FakeCollection:
    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.update_calls: list[dict[str, Any]] = []

    def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        return self.docs.get(filter["_id"])

    def update_one(
        self, filter: dict[str, Any], update: dict[str, Any], upsert: bool = False
    ) -> None:
        self.update_calls.append({"filter": filter, "update": update, "upsert": upsert})
        doc = self.docs.setdefault(filter["_id"], {"_id": filter["_id"]})
        doc.update(update["$set"])


class UnreachableCollection:
    def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        raise ServerSelectionTimeoutError("no servers")

    def update_one(
        self, filter: dict[str, Any], update: dict[str, Any], upsert: bool = False
    ) -> None:
        raise ServerSelectionTimeoutError("no servers")


def test_mongo_state_store_round_trip_upserts_single_document() -> None:
    collection = FakeCollection()
    store = MongoStateStore(collection=collection, doc_id="default")

    assert store.load_state() == {}

    store.save_state({"positions": [{"ticker": "AMZN"}]})

    assert store.load_state() == {"positions": [{"ticker": "AMZN"}]}
    call = collection.update_calls[0]
    assert call["filter"] == {"_id": "default"}
    assert call["upsert"] is True
    assert "updated_at" in call["update"]["$set"]


def test_mongo_state_store_ignores_non_object_state() -> None:
    collection = FakeCollection()
    collection.docs["default"] = {"_id": "default", "state": ["not", "a", "dict"]}

    assert MongoStateStore(collection=collection).load_state() == {}


def test_mongo_errors_become_storage_errors() -> None:
    store = MongoStateStore(collection=UnreachableCollection())

    with pytest.raises(StorageError, match="read failed"):
        store.load_state()
    with pytest.raises(StorageError, match="write failed"):
        store.save_state({"positions": []})


def test_from_uri_requires_configuration() -> None:
    with pytest.raises(ConfigError):
        MongoStateStore.from_uri(uri=None, db="trade_agent", collection="trade_state")


def test_in_memory_state_store_copies_state() -> None:
    store = InMemoryStateStore({"cash": {"sleeve_value": 1}})
    loaded = store.load_state()
    loaded["cash"] = None

    assert store.load_state() == {"cash": {"sleeve_value": 1}}
