from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol

from tradeplan.storage.db import connection, init_db
from tradeplan.storage.models import JobRecord
from tradeplan.utils.error_taxonomy import StorageError

_COLUMNS = (
    "plan_key",
    "status",
    "request_id",
    "created_at",
    "updated_at",
    "data_json",
    "error",
    "error_code",
    "preview",
    "metrics_json",
)


class JobStore(Protocol):
    def get(self, plan_key: str) -> JobRecord | None: ...

    def set(self, plan_key: str, record: JobRecord) -> None: ...

    def compare_and_set(
        self, plan_key: str, record: JobRecord, *, expected: JobRecord | None
    ) -> bool: ...


class InMemoryJobStore:
    """Process-local job store guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, JobRecord] = {}

    def get(self, plan_key: str) -> JobRecord | None:
        with self._lock:
            return self._records.get(plan_key)

    def set(self, plan_key: str, record: JobRecord) -> None:
        with self._lock:
            self._records[plan_key] = record

    def compare_and_set(
        self, plan_key: str, record: JobRecord, *, expected: JobRecord | None
    ) -> bool:
        with self._lock:
            current = self._records.get(plan_key)
            if expected is None:
                if current is not None:
                    return False
            elif not expected.same_claim(current):
                return False
            self._records[plan_key] = record
            return True

    def snapshot(self) -> dict[str, JobRecord]:
        with self._lock:
            return dict(self._records)


class SQLiteJobStore:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        try:
            init_db(self.db_path)
        except (sqlite3.Error, OSError) as error:
            raise StorageError(f"Job store init failed: {error}") from error

    def get(self, plan_key: str) -> JobRecord | None:
        try:
            with connection(self.db_path) as conn:
                row = conn.execute(
                    f"SELECT {', '.join(_COLUMNS)} FROM plan_jobs WHERE plan_key = ?",
                    (plan_key,),
                ).fetchone()
        except sqlite3.Error as error:
            raise StorageError(f"Job store read failed: {error}") from error

        if row is None:
            return None
        return _row_to_record(row)

    def set(self, plan_key: str, record: JobRecord) -> None:
        try:
            with connection(self.db_path) as conn:
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO plan_jobs ({', '.join(_COLUMNS)})
                    VALUES ({', '.join('?' for _ in _COLUMNS)})
                    """,
                    _record_to_row(plan_key, record),
                )
        except sqlite3.Error as error:
            raise StorageError(f"Job store write failed: {error}") from error

    def compare_and_set(
        self, plan_key: str, record: JobRecord, *, expected: JobRecord | None
    ) -> bool:
        try:
            with connection(self.db_path) as conn:
                if expected is None:
                    result = conn.execute(
                        f"""
                        INSERT OR IGNORE INTO plan_jobs ({', '.join(_COLUMNS)})
                        VALUES ({', '.join('?' for _ in _COLUMNS)})
                        """,
                        _record_to_row(plan_key, record),
                    )
                else:
                    row = _record_to_row(plan_key, record)
                    result = conn.execute(
                        """
                        UPDATE plan_jobs
                        SET
                            status = ?,
                            request_id = ?,
                            created_at = ?,
                            updated_at = ?,
                            data_json = ?,
                            error = ?,
                            error_code = ?,
                            preview = ?,
                            metrics_json = ?
                        WHERE plan_key = ? AND status = ? AND request_id = ?
                        """,
                        (
                            *row[1:],
                            plan_key,
                            expected.status,
                            expected.request_id,
                        ),
                    )
        except sqlite3.Error as error:
            raise StorageError(f"Job store conditional write failed: {error}") from error

        return result.rowcount == 1


def build_job_store(*, backend: str, sqlite_path: Path) -> JobStore:
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "sqlite":
        return SQLiteJobStore(sqlite_path)
    raise ValueError(f"Unknown job store backend: {backend}")


def _record_to_row(plan_key: str, record: JobRecord) -> tuple[Any, ...]:
    return (
        plan_key,
        record.status,
        record.request_id,
        record.created_at,
        record.updated_at,
        _to_json_text(record.data),
        record.error,
        record.error_code,
        record.preview,
        _to_json_text(record.metrics),
    )


def _row_to_record(row: sqlite3.Row) -> JobRecord:
    return JobRecord(
        status=str(row["status"]),  # type: ignore[arg-type]
        request_id=str(row["request_id"]),
        created_at=str(row["created_at"]),
        updated_at=row["updated_at"],
        data=_from_json_text(row["data_json"]),
        error=row["error"],
        error_code=row["error_code"],
        preview=row["preview"],
        metrics=_from_json_text(row["metrics_json"]),
    )


def _to_json_text(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _from_json_text(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    parsed = json.loads(value)
    return parsed if isinstance(parsed, dict) else None
