from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

JobStatus = Literal["running", "ready", "error"]
StatusView = Literal["absent", "running", "ready", "error"]


@dataclass(frozen=True, slots=True)
class JobRecord:
    status: JobStatus
    created_at: str
    request_id: str
    updated_at: str | None = None
    data: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    preview: str | None = None
    metrics: dict[str, Any] | None = None

    def same_claim(self, other: "JobRecord | None") -> bool:
        if other is None:
            return False
        return self.status == other.status and self.request_id == other.request_id

    def is_stale(self, *, now: datetime, stale_after_seconds: float) -> bool:
        if self.status != "running":
            return False
        started = parse_timestamp(self.updated_at or self.created_at)
        if started is None:
            return True
        return (now - started).total_seconds() > stale_after_seconds

    def to_status_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status}
        if self.status == "ready":
            payload["data"] = self.data
        if self.status == "error":
            payload["error"] = self.error
            payload["error_code"] = self.error_code
            payload["preview"] = self.preview or ""
        payload["created_at"] = self.created_at
        payload["request_id"] = self.request_id
        return payload


def running_record(*, request_id: str, created_at: str | None = None) -> JobRecord:
    timestamp = created_at or utc_now()
    return JobRecord(
        status="running",
        created_at=timestamp,
        updated_at=timestamp,
        request_id=request_id,
    )


def ready_record(
    claimed: JobRecord, *, data: dict[str, Any], metrics: dict[str, Any] | None = None
) -> JobRecord:
    return JobRecord(
        status="ready",
        created_at=claimed.created_at,
        updated_at=utc_now(),
        request_id=claimed.request_id,
        data=data,
        metrics=metrics,
    )


def error_record(
    claimed: JobRecord,
    *,
    error: str,
    error_code: str,
    preview: str | None,
    metrics: dict[str, Any] | None = None,
) -> JobRecord:
    return JobRecord(
        status="error",
        created_at=claimed.created_at,
        updated_at=utc_now(),
        request_id=claimed.request_id,
        error=error,
        error_code=error_code,
        preview=preview or "",
        metrics=metrics,
    )


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
