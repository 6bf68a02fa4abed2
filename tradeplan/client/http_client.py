from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tradeplan.logging import get_logger
from tradeplan.utils.error_taxonomy import (
    InputError,
    StorageError,
    UpstreamError,
    UpstreamTimeoutError,
    is_retryable_status_code,
    truncate_preview,
)

logger = get_logger("client")

API_PREFIX = "/api/v1"


class PlanApiClient:
    """Synchronous caller for the plan API.

    Accepts any ``httpx.Client`` (including FastAPI's ``TestClient``) so the
    same code drives a live server and an in-process app.
    """

    def __init__(
        self,
        *,
        base_url: str = "http://127.0.0.1:8000",
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
        max_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "PlanApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def start(self, state: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/plans/start", json={"state": state})

    def generate(self, plan_key: str, state: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "POST", "/plans/generate", json={"hash": plan_key, "state": state}
        )

    def status(self, plan_key: str) -> dict[str, Any]:
        return self._request("GET", "/plans/status", params={"hash": plan_key})

    def get_trade_state(self) -> dict[str, Any]:
        payload = self._request("GET", "/trade-state")
        state = payload.get("state")
        return state if isinstance(state, dict) else {}

    def save_trade_state(self, state: dict[str, Any], *, admin_key: str) -> None:
        self._request(
            "POST",
            "/trade-state",
            json=state,
            headers={"X-Admin-Key": admin_key},
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        retrying = Retrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait_seconds, max=10),
            reraise=True,
        )
        return retrying(self._send, method, path, **kwargs)

    def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.TimeoutException as error:
            raise UpstreamTimeoutError(f"{method} {path} timed out") from error
        except httpx.HTTPError as error:
            raise UpstreamError(f"{method} {path} failed: {error}") from error

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_success:
            return payload

        message = str(payload.get("error") or f"HTTP {response.status_code}")
        preview = truncate_preview(response.text)
        logger.warning(
            "api-error",
            extra={
                "request_id": response.headers.get("x-request-id"),
                "status": response.status_code,
                "error_code": payload.get("error_code"),
            },
        )
        if response.status_code == 400:
            raise InputError(message, preview=preview)
        if response.status_code == 503:
            raise StorageError(message, preview=preview)
        raise UpstreamError(message, status_code=response.status_code, preview=preview)


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, UpstreamTimeoutError):
        return True
    if isinstance(error, StorageError):
        return True
    if isinstance(error, UpstreamError):
        if error.status_code is None:
            return True
        return is_retryable_status_code(error.status_code)
    return False
