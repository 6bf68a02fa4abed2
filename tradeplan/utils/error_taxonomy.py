from __future__ import annotations

import json
import socket
import sqlite3
from typing import Any, Literal

ErrorCode = Literal[
    "INPUT_ERROR",
    "CONFIG_ERROR",
    "LLM_API_ERROR",
    "LLM_TIMEOUT",
    "LLM_INVALID_JSON",
    "LLM_SCHEMA_INVALID",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "INPUT_ERROR": "Request body is missing or malformed.",
    "CONFIG_ERROR": "Server is missing required configuration.",
    "LLM_API_ERROR": "LLM provider request failed. Please retry.",
    "LLM_TIMEOUT": "LLM provider did not answer before the deadline.",
    "LLM_INVALID_JSON": "Model reply did not contain a JSON object.",
    "LLM_SCHEMA_INVALID": "Model output is missing required plan sections.",
    "STORAGE_ERROR": "Job store is unavailable. Please retry.",
    "UNKNOWN_ERROR": "Unexpected error occurred during plan generation.",
}

HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    "INPUT_ERROR": 400,
    "CONFIG_ERROR": 500,
    "LLM_API_ERROR": 502,
    "LLM_TIMEOUT": 504,
    "LLM_INVALID_JSON": 502,
    "LLM_SCHEMA_INVALID": 502,
    "STORAGE_ERROR": 503,
    "UNKNOWN_ERROR": 500,
}

DEFAULT_PREVIEW_CHARS = 300


class PlanError(Exception):
    """Base class for failures surfaced by the generation pipeline."""

    error_code: ErrorCode = "UNKNOWN_ERROR"

    def __init__(self, message: str, *, preview: str | None = None) -> None:
        super().__init__(message)
        self.preview = preview


class InputError(PlanError, ValueError):
    """Raised when a request body or state snapshot is malformed."""

    error_code: ErrorCode = "INPUT_ERROR"


class ConfigError(PlanError):
    """Raised when a required credential or setting is missing."""

    error_code: ErrorCode = "CONFIG_ERROR"


class UpstreamError(PlanError):
    """Raised on a non-success response or transport failure from the LLM provider."""

    error_code: ErrorCode = "LLM_API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        preview: str | None = None,
    ) -> None:
        super().__init__(message, preview=preview)
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    """Raised when the LLM call exceeds its deadline."""

    error_code: ErrorCode = "LLM_TIMEOUT"


class UnparsableContentError(PlanError, ValueError):
    """Raised when no extraction strategy yields a JSON object."""

    error_code: ErrorCode = "LLM_INVALID_JSON"


class PlanValidationError(PlanError):
    """Raised when a coerced plan still lacks required top-level sections."""

    error_code: ErrorCode = "LLM_SCHEMA_INVALID"

    def __init__(
        self,
        message: str,
        *,
        missing_keys: list[str] | None = None,
        preview: str | None = None,
    ) -> None:
        super().__init__(message, preview=preview)
        self.missing_keys = list(missing_keys or [])


class StorageError(PlanError):
    """Raised when the job store or state store cannot be reached."""

    error_code: ErrorCode = "STORAGE_ERROR"


def classify_llm_error(error: Exception) -> ErrorCode:
    if isinstance(error, PlanError):
        return error.error_code
    if isinstance(error, json.JSONDecodeError):
        return "LLM_INVALID_JSON"
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    if is_timeout_exception(error):
        return "LLM_TIMEOUT"
    if extract_http_status_code(error) is not None:
        return "LLM_API_ERROR"
    if isinstance(error, (ConnectionError, RuntimeError)):
        return "LLM_API_ERROR"
    return "UNKNOWN_ERROR"


def is_stage_b_eligible(error: Exception) -> bool:
    return isinstance(error, (UpstreamError, UnparsableContentError))


def to_upstream_error(
    error: Exception, *, preview_chars: int = DEFAULT_PREVIEW_CHARS
) -> UpstreamError:
    if isinstance(error, UpstreamError):
        return error

    if is_timeout_exception(error):
        return UpstreamTimeoutError("LLM request timed out")

    status_code = extract_http_status_code(error)
    body = _extract_error_body(error)
    preview = truncate_preview(body, limit=preview_chars) if body else None
    if status_code is not None:
        return UpstreamError(
            f"LLM provider error {status_code}",
            status_code=status_code,
            preview=preview,
        )
    return UpstreamError(
        f"LLM request failed: {error.__class__.__name__}: {error}",
        preview=preview,
    )


def is_timeout_exception(error: Exception) -> bool:
    if isinstance(error, (TimeoutError, socket.timeout)):
        return True

    class_name = error.__class__.__name__.lower()
    message = str(error).lower()
    return "timeout" in class_name or "timed out" in message


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def extract_http_status_code(error: Exception) -> int | None:
    for field_name in ("status_code", "status", "http_status"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def is_storage_error_exception(error: Exception) -> bool:
    if isinstance(error, StorageError):
        return True
    if isinstance(error, sqlite3.Error):
        return True
    if isinstance(error, OSError) and not isinstance(
        error, (TimeoutError, ConnectionError)
    ):
        return True
    return False


def truncate_preview(value: Any, *, limit: int = DEFAULT_PREVIEW_CHARS) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            text = str(value)
    return text[:limit]


def _extract_error_body(error: Exception) -> str | None:
    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value:
            return value if isinstance(value, str) else truncate_preview(value)

    response = getattr(error, "response", None)
    text = getattr(response, "text", None) if response is not None else None
    if isinstance(text, str) and text:
        return text
    return None


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
