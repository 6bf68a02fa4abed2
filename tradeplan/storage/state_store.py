from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Protocol

import pymongo
from pymongo.errors import PyMongoError

from tradeplan.utils.error_taxonomy import ConfigError, StorageError


class StateStore(Protocol):
    def load_state(self) -> dict[str, Any]: ...

    def save_state(self, state: dict[str, Any]) -> None: ...


class CollectionLike(Protocol):
    def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None: ...

    def update_one(
        self, filter: dict[str, Any], update: dict[str, Any], upsert: bool = False
    ) -> Any: ...


class MongoStateStore:
    """Portfolio snapshot kept as one document in a MongoDB collection."""

    def __init__(
        self,
        *,
        collection: CollectionLike,
        doc_id: str = "default",
    ) -> None:
        self._collection = collection
        self._doc_id = doc_id

    @classmethod
    def from_uri(
        cls,
        *,
        uri: str | None,
        db: str,
        collection: str,
        doc_id: str = "default",
    ) -> "MongoStateStore":
        if not uri:
            raise ConfigError("MONGO_URI is not configured")
        client = pymongo.MongoClient(uri)
        return cls(collection=client[db][collection], doc_id=doc_id)

    def load_state(self) -> dict[str, Any]:
        try:
            doc = self._collection.find_one({"_id": self._doc_id})
        except PyMongoError as error:
            raise StorageError(f"State store read failed: {error}") from error

        state = (doc or {}).get("state")
        return state if isinstance(state, dict) else {}

    def save_state(self, state: dict[str, Any]) -> None:
        try:
            self._collection.update_one(
                {"_id": self._doc_id},
                {"$set": {"state": state, "updated_at": _utc_now()}},
                upsert=True,
            )
        except PyMongoError as error:
            raise StorageError(f"State store write failed: {error}") from error


class InMemoryStateStore:
    def __init__(self, state: dict[str, Any] | None = None) -> None:
        self._lock = threading.Lock()
        self._state: dict[str, Any] = dict(state or {})

    def load_state(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._state)

    def save_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            self._state = dict(state)


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
