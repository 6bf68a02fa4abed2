from __future__ import annotations

import argparse
import json
import time
from pathlib import Path
from typing import Any, Callable

from tradeplan.client.http_client import PlanApiClient
from tradeplan.config.settings import get_settings
from tradeplan.logging import get_logger
from tradeplan.pipeline.poller import poll_plan_status
from tradeplan.utils.error_taxonomy import InputError, PlanError

logger = get_logger("ops.request_plan")


def request_plan(
    *,
    client: PlanApiClient,
    state: dict[str, Any],
    interval_seconds: float,
    max_attempts: int,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """Drive start -> generate -> poll and return a JSON-ready report."""
    started = client.start(state)
    plan_key = str(started.get("hash") or "")
    start_status = started.get("status")

    if start_status == "ready":
        return {
            "status": "ready",
            "hash": plan_key,
            "source": "cache",
            "attempts": 0,
            "data": started.get("data"),
        }

    if start_status == "start":
        client.generate(plan_key, state)

    outcome = poll_plan_status(
        plan_key=plan_key,
        fetch_status=client.status,
        interval_seconds=interval_seconds,
        max_attempts=max_attempts,
        sleep_fn=sleep_fn,
    )
    report: dict[str, Any] = {
        "status": outcome.status,
        "hash": plan_key,
        "source": "generated" if start_status == "start" else "in_flight",
        "attempts": outcome.attempts,
    }
    if outcome.status == "ready":
        report["data"] = outcome.data
    elif outcome.status == "error":
        report["error"] = outcome.error
        report["error_code"] = outcome.error_code
        report["preview"] = outcome.preview
    return report


def load_state_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise InputError(f"Cannot read state file {path}: {error}") from error

    # Accept both a bare state document and a {"state": ...} request body.
    if isinstance(payload, dict) and isinstance(payload.get("state"), dict):
        payload = payload["state"]
    if not isinstance(payload, dict):
        raise InputError(f"State file must contain a JSON object: {path}")
    return payload


def _json_report_text(report: dict[str, Any]) -> str:
    return f"{json.dumps(report, ensure_ascii=False, indent=2, sort_keys=True)}\n"


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Request a trade plan and wait for the generated document."
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--state-file",
        default=None,
        help="Path to a JSON portfolio state (or a {\"state\": ...} body).",
    )
    source.add_argument(
        "--from-server",
        action="store_true",
        help="Use the state stored on the server (GET /trade-state).",
    )
    parser.add_argument("--base-url", default=settings.api_base_url)
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=settings.poll_interval_seconds,
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=settings.poll_max_attempts,
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Also write the JSON report to the given path.",
    )
    args = parser.parse_args(argv)

    with PlanApiClient(base_url=args.base_url) as client:
        try:
            if args.state_file:
                state = load_state_file(Path(args.state_file))
            elif args.from_server:
                state = client.get_trade_state()
            else:
                parser.error("one of --state-file or --from-server is required")
            report = request_plan(
                client=client,
                state=state,
                interval_seconds=args.interval_seconds,
                max_attempts=args.max_attempts,
            )
        except PlanError as error:
            logger.error("request-failed", extra={"error_code": error.error_code})
            report = {
                "status": "error",
                "error": str(error),
                "error_code": error.error_code,
                "preview": error.preview or "",
            }

    text = _json_report_text(report)
    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
    print(text, end="")
    return 0 if report.get("status") == "ready" else 1


if __name__ == "__main__":
    raise SystemExit(main())
