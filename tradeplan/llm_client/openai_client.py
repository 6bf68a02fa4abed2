from __future__ import annotations

import time
from typing import Any, Protocol

import httpx

from tradeplan.llm_client.base import LLMCallConfig, LLMResult
from tradeplan.llm_client.cost import estimate_llm_cost
from tradeplan.llm_client.json_extract import extract_json_object, stamp_version
from tradeplan.llm_client.normalize_usage import normalize_openai_usage
from tradeplan.logging import get_logger
from tradeplan.utils.error_taxonomy import (
    DEFAULT_PREVIEW_CHARS,
    ConfigError,
    UnparsableContentError,
    to_upstream_error,
    truncate_preview,
)

logger = get_logger("llm_client")

# share of a stage budget given to each of connect, write and pool; read gets the rest
SETUP_PHASE_SHARE = 0.1


class ChatCompletionsService(Protocol):
    def create(self, **kwargs: Any) -> Any: ...


def request_timeout(timeout_seconds: float) -> httpx.Timeout:
    setup = timeout_seconds * SETUP_PHASE_SHARE
    return httpx.Timeout(
        connect=setup,
        write=setup,
        pool=setup,
        read=timeout_seconds - 3 * setup,
    )


class OpenAIChatClient:
    def __init__(
        self,
        *,
        call_config: LLMCallConfig,
        api_key: str | None = None,
        base_url: str | None = None,
        completions_service: ChatCompletionsService | None = None,
        pricing_config: dict[str, Any] | None = None,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
    ) -> None:
        self._call_config = call_config
        self._api_key = api_key
        self._base_url = base_url
        self._completions_service = completions_service
        self._pricing_config = pricing_config or {}
        self._preview_chars = preview_chars

    def generate_json(
        self,
        *,
        system_prompt: str,
        user_content: str,
        timeout_seconds: float,
        run_meta: dict[str, Any],
    ) -> LLMResult:
        service = self._resolve_service()
        payload = self.build_request_payload(
            system_prompt=system_prompt,
            user_content=user_content,
            call_config=self._call_config,
        )

        start_time = time.perf_counter()
        try:
            response = service.create(
                **payload, timeout=request_timeout(timeout_seconds)
            )
        except Exception as error:  # noqa: BLE001
            raise to_upstream_error(error, preview_chars=self._preview_chars) from error
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = _to_dict(response)
        content = _extract_message_content(response=response, payload=response_payload)
        usage_raw = _extract_usage(response=response, payload=response_payload)
        usage_normalized = normalize_openai_usage(usage_raw)
        preview = truncate_preview(content, limit=self._preview_chars)

        logger.info(
            "openai-envelope",
            extra={
                "stage": run_meta.get("stage"),
                "duration_ms": round(elapsed_ms, 1),
                "metrics": {"usage": usage_normalized, "content_chars": len(preview)},
                "preview": preview,
            },
        )

        if content is None:
            raise UnparsableContentError(
                "Assistant content missing or invalid",
                preview=truncate_preview(response_payload, limit=self._preview_chars),
            )

        extracted = extract_json_object(content, preview_chars=self._preview_chars)
        raw_text = content if isinstance(content, str) else truncate_preview(content)

        cost = estimate_llm_cost(
            pricing_config=self._pricing_config,
            provider="openai",
            model=self._call_config.model,
            usage_normalized=usage_normalized,
        )

        return LLMResult(
            raw_text=raw_text,
            parsed_json=stamp_version(extracted.payload),
            extraction_strategy=extracted.strategy,
            raw_response=response_payload,
            usage_raw=usage_raw,
            usage_normalized=usage_normalized,
            cost=cost,
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        system_prompt: str,
        user_content: str,
        call_config: LLMCallConfig,
    ) -> dict[str, Any]:
        return {
            "model": call_config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "temperature": call_config.temperature,
            "top_p": call_config.top_p,
            "max_tokens": int(call_config.max_output_tokens),
            "response_format": {"type": "json_object"},
        }

    def _resolve_service(self) -> ChatCompletionsService:
        if self._completions_service is not None:
            return self._completions_service

        if not self._api_key:
            raise ConfigError(
                "OpenAI API key is required (TRADEPLAN_OPENAI_API_KEY or OPENAI_API_KEY)"
            )

        from openai import OpenAI

        client_kwargs: dict[str, Any] = {"api_key": self._api_key, "max_retries": 0}
        if self._base_url:
            client_kwargs["base_url"] = self._base_url
        client = OpenAI(**client_kwargs)
        self._completions_service = client.chat.completions
        return self._completions_service


def _extract_message_content(*, response: Any, payload: dict[str, Any]) -> Any:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, (str, dict)) and content:
                    return content

    response_choices = getattr(response, "choices", None)
    if isinstance(response_choices, list) and response_choices:
        message = getattr(response_choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str) and content:
            return content

    return None


def _extract_usage(*, response: Any, payload: dict[str, Any]) -> dict[str, Any]:
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return usage

    response_usage = getattr(response, "usage", None)
    if response_usage is None:
        return {}

    return _to_dict(response_usage)


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
