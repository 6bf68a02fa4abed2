from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

from tradeplan.logging import get_logger
from tradeplan.utils.error_taxonomy import StorageError, UpstreamError

logger = get_logger("poller")

PollStatus = Literal["ready", "error", "timeout"]


@dataclass(frozen=True, slots=True)
class PollOutcome:
    status: PollStatus
    attempts: int
    data: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    preview: str | None = None


def poll_plan_status(
    *,
    plan_key: str,
    fetch_status: Callable[[str], dict[str, Any]],
    interval_seconds: float,
    max_attempts: int,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> PollOutcome:
    """Read the status view until it settles or the attempt budget runs out.

    ``fetch_status`` returns the status payload (``{"status": ..., ...}``) for a
    key. Transient read failures count as an attempt; exhaustion yields a
    ``timeout`` outcome rather than an exception.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            payload = fetch_status(plan_key)
        except (StorageError, UpstreamError) as error:
            logger.warning(
                "poll-read-failed",
                extra={"plan_key": plan_key, "error_code": error.error_code},
            )
            payload = {}

        status = payload.get("status")
        if status == "ready":
            return PollOutcome(status="ready", attempts=attempt, data=payload.get("data"))
        if status == "error":
            return PollOutcome(
                status="error",
                attempts=attempt,
                error=payload.get("error") or "Upstream error",
                error_code=payload.get("error_code"),
                preview=payload.get("preview") or "",
            )

        if attempt < max_attempts:
            sleep_fn(interval_seconds)

    logger.info("poll-timeout", extra={"plan_key": plan_key, "status": "timeout"})
    return PollOutcome(status="timeout", attempts=max_attempts)
