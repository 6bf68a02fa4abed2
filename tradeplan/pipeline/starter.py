from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from tradeplan.logging import get_logger
from tradeplan.pipeline.canonicalize import canonicalize_request
from tradeplan.storage.job_store import JobStore
from tradeplan.storage.models import JobRecord

logger = get_logger("starter")

StartStatus = Literal["ready", "running", "start"]


@dataclass(frozen=True, slots=True)
class StartResult:
    status: StartStatus
    plan_key: str
    data: dict[str, Any] | None = None


def start_plan(
    raw_state: Any,
    *,
    job_store: JobStore,
    stale_after_seconds: float,
    now: datetime | None = None,
) -> StartResult:
    """Decide whether a plan is cached, in flight, or needs a worker run.

    Never writes to the job store; claiming the key is the worker's job.
    """
    request = canonicalize_request(raw_state)
    record = job_store.get(request.plan_key)
    status = decide_start_status(
        record,
        now=now or datetime.now(tz=timezone.utc),
        stale_after_seconds=stale_after_seconds,
    )

    logger.info(
        "start-decision",
        extra={"plan_key": request.plan_key, "status": status},
    )

    if status == "ready" and record is not None:
        return StartResult(status="ready", plan_key=request.plan_key, data=record.data)
    return StartResult(status=status, plan_key=request.plan_key)


def decide_start_status(
    record: JobRecord | None,
    *,
    now: datetime,
    stale_after_seconds: float,
) -> StartStatus:
    if record is None or record.status == "error":
        return "start"
    if record.status == "ready":
        return "ready"
    if record.is_stale(now=now, stale_after_seconds=stale_after_seconds):
        return "start"
    return "running"
