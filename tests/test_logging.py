from __future__ import annotations

import json
import logging

from tradeplan.logging import (
    JsonFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
    setup_logging,
)


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="tradeplan.worker",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_thread_context() -> None:
    set_log_context(fn="planGenerate", request_id="req-1", plan_key="abc")
    try:
        line = JsonFormatter().format(_record("claimed", status="running"))
    finally:
        clear_log_context()

    payload = json.loads(line)
    assert payload["msg"] == "claimed"
    assert payload["level"] == "INFO"
    assert payload["fn"] == "planGenerate"
    assert payload["request_id"] == "req-1"
    assert payload["plan_key"] == "abc"
    assert payload["status"] == "running"
    assert "stage" not in payload
    assert get_log_context() == {}


def test_record_fields_override_context() -> None:
    set_log_context(request_id="ctx-id")
    try:
        line = JsonFormatter().format(
            _record(
                "stageB-fail",
                request_id="explicit",
                stage="B",
                error_code="LLM_TIMEOUT",
            )
        )
    finally:
        clear_log_context()

    payload = json.loads(line)
    assert payload["request_id"] == "explicit"
    assert payload["stage"] == "B"
    assert payload["error_code"] == "LLM_TIMEOUT"


def test_setup_logging_installs_single_json_handler(tmp_path) -> None:
    log_file = tmp_path / "tradeplan.log"

    logger = setup_logging(logging.DEBUG, log_file=str(log_file))
    setup_logging(logging.DEBUG, log_file=str(log_file))

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert all(isinstance(h.formatter, JsonFormatter) for h in logger.handlers)
    assert get_logger("api").name == "tradeplan.api"

    get_logger("api").info("health", extra={"status": "healthy"})
    for handler in logger.handlers:
        handler.flush()
    last_line = log_file.read_text(encoding="utf-8").splitlines()[-1]
    assert json.loads(last_line)["msg"] == "health"

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
