from __future__ import annotations

import json
import sqlite3

from tradeplan.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    HTTP_STATUS_BY_CODE,
    ConfigError,
    InputError,
    PlanValidationError,
    StorageError,
    UnparsableContentError,
    UpstreamError,
    UpstreamTimeoutError,
    classify_llm_error,
    extract_http_status_code,
    is_retryable_status_code,
    is_stage_b_eligible,
    to_upstream_error,
    truncate_preview,
)


class HttpError(RuntimeError):
    def __init__(self, status_code: int, message: str = "http error") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = '{"error": {"message": "overloaded"}}'


class ReadTimeout(Exception):
    pass


def test_error_code_mapping() -> None:
    assert classify_llm_error(InputError("x")) == "INPUT_ERROR"
    assert classify_llm_error(ConfigError("x")) == "CONFIG_ERROR"
    assert classify_llm_error(UpstreamTimeoutError("x")) == "LLM_TIMEOUT"
    assert classify_llm_error(UnparsableContentError("x")) == "LLM_INVALID_JSON"
    assert classify_llm_error(PlanValidationError("x")) == "LLM_SCHEMA_INVALID"
    assert (
        classify_llm_error(json.JSONDecodeError("msg", "{}", 0)) == "LLM_INVALID_JSON"
    )
    assert classify_llm_error(HttpError(503)) == "LLM_API_ERROR"
    assert classify_llm_error(ReadTimeout("read")) == "LLM_TIMEOUT"
    assert classify_llm_error(sqlite3.OperationalError("db fail")) == "STORAGE_ERROR"
    assert classify_llm_error(PermissionError("disk denied")) == "STORAGE_ERROR"

    class WeirdError(Exception):
        pass

    assert classify_llm_error(WeirdError("boom")) == "UNKNOWN_ERROR"


def test_stage_b_eligibility() -> None:
    assert is_stage_b_eligible(UpstreamError("x", status_code=500)) is True
    assert is_stage_b_eligible(UpstreamTimeoutError("x")) is True
    assert is_stage_b_eligible(UnparsableContentError("x")) is True
    assert is_stage_b_eligible(ConfigError("x")) is False
    assert is_stage_b_eligible(InputError("x")) is False


def test_to_upstream_error_keeps_status_and_body_preview() -> None:
    converted = to_upstream_error(HttpError(429), preview_chars=10)

    assert isinstance(converted, UpstreamError)
    assert converted.status_code == 429
    assert converted.preview == '{"error": '
    assert str(converted) == "LLM provider error 429"

    timeout = to_upstream_error(TimeoutError("deadline"))
    assert isinstance(timeout, UpstreamTimeoutError)
    assert timeout.error_code == "LLM_TIMEOUT"

    wrapped = UpstreamError("already wrapped")
    assert to_upstream_error(wrapped) is wrapped


def test_retryable_status_codes() -> None:
    assert is_retryable_status_code(429) is True
    assert is_retryable_status_code(500) is True
    assert is_retryable_status_code(503) is True
    assert is_retryable_status_code(400) is False
    assert is_retryable_status_code(404) is False


def test_http_status_extraction_and_messages() -> None:
    error = HttpError(502)
    assert extract_http_status_code(error) == 502
    assert extract_http_status_code(ValueError("x")) is None

    assert set(ERROR_FRIENDLY_MESSAGES) == set(HTTP_STATUS_BY_CODE)
    assert HTTP_STATUS_BY_CODE["INPUT_ERROR"] == 400
    assert HTTP_STATUS_BY_CODE[StorageError.error_code] == 503


def test_truncate_preview() -> None:
    assert truncate_preview(None) == ""
    assert truncate_preview("abcdef", limit=3) == "abc"
    assert truncate_preview({"a": 1}) == '{"a": 1}'
    assert len(truncate_preview("x" * 1000)) == 300
