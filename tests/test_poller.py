from __future__ import annotations

from typing import Any

import pytest

from tradeplan.pipeline.poller import poll_plan_status
from tradeplan.utils.error_taxonomy import StorageError, UpstreamTimeoutError


class ScriptedStatusSource:
    def __init__(self, responses: list[dict[str, Any] | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[str] = []

    def __call__(self, plan_key: str) -> dict[str, Any]:
        self.calls.append(plan_key)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_poll_returns_ready_data_after_running() -> None:
    source = ScriptedStatusSource(
        [
            {"status": "absent"},
            {"status": "running"},
            {"status": "ready", "data": {"version": 1}},
        ]
    )
    sleeps: list[float] = []

    outcome = poll_plan_status(
        plan_key="abc",
        fetch_status=source,
        interval_seconds=2.0,
        max_attempts=10,
        sleep_fn=sleeps.append,
    )

    assert outcome.status == "ready"
    assert outcome.attempts == 3
    assert outcome.data == {"version": 1}
    assert sleeps == [2.0, 2.0]
    assert source.calls == ["abc", "abc", "abc"]


def test_poll_returns_recorded_error() -> None:
    source = ScriptedStatusSource(
        [
            {
                "status": "error",
                "error": "Validation failed after retry",
                "error_code": "LLM_SCHEMA_INVALID",
                "preview": "{}",
            }
        ]
    )

    outcome = poll_plan_status(
        plan_key="abc",
        fetch_status=source,
        interval_seconds=1.0,
        max_attempts=3,
        sleep_fn=lambda _: None,
    )

    assert outcome.status == "error"
    assert outcome.attempts == 1
    assert outcome.error == "Validation failed after retry"
    assert outcome.error_code == "LLM_SCHEMA_INVALID"
    assert outcome.preview == "{}"


def test_poll_exhaustion_yields_timeout_without_raising() -> None:
    source = ScriptedStatusSource([{"status": "running"}] * 3)
    sleeps: list[float] = []

    outcome = poll_plan_status(
        plan_key="abc",
        fetch_status=source,
        interval_seconds=0.5,
        max_attempts=3,
        sleep_fn=sleeps.append,
    )

    assert outcome.status == "timeout"
    assert outcome.attempts == 3
    assert outcome.data is None
    assert sleeps == [0.5, 0.5]


def test_poll_continues_after_transient_read_failure() -> None:
    source = ScriptedStatusSource(
        [
            StorageError("db locked"),
            UpstreamTimeoutError("slow"),
            {"status": "ready", "data": {"version": 1}},
        ]
    )

    outcome = poll_plan_status(
        plan_key="abc",
        fetch_status=source,
        interval_seconds=0.0,
        max_attempts=5,
        sleep_fn=lambda _: None,
    )

    assert outcome.status == "ready"
    assert outcome.attempts == 3


def test_poll_rejects_empty_budget() -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        poll_plan_status(
            plan_key="abc",
            fetch_status=ScriptedStatusSource([]),
            interval_seconds=1.0,
            max_attempts=0,
        )
