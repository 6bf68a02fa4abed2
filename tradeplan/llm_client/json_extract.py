"""Tolerant extraction of a JSON object from free-form model replies.

Each strategy is a pure function returning the parsed object or ``None``.
``extract_json_object`` tries them in ``EXTRACTION_STRATEGIES`` order.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable

from tradeplan.utils.error_taxonomy import (
    DEFAULT_PREVIEW_CHARS,
    UnparsableContentError,
    truncate_preview,
)

_FENCE_JSON_RE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)
_FENCE_ANY_RE = re.compile(r"```([\s\S]*?)```")
_LANGUAGE_TAG_RE = re.compile(r"^[A-Za-z0-9_+-]+\s*\n")

ExtractionStrategy = Callable[[str], "dict[str, Any] | None"]


@dataclass(frozen=True, slots=True)
class ExtractedJson:
    payload: dict[str, Any]
    strategy: str


def parse_direct(text: str) -> dict[str, Any] | None:
    return _load_object(text)


def parse_fenced_block(text: str) -> dict[str, Any] | None:
    for pattern in (_FENCE_JSON_RE, _FENCE_ANY_RE):
        match = pattern.search(text)
        if match is None:
            continue
        block = _LANGUAGE_TAG_RE.sub("", match.group(1).lstrip(" \t"), count=1)
        parsed = _load_object(block)
        if parsed is not None:
            return parsed
    return None


def parse_brace_span(text: str) -> dict[str, Any] | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return _load_object(text[first : last + 1])


EXTRACTION_STRATEGIES: tuple[tuple[str, ExtractionStrategy], ...] = (
    ("direct", parse_direct),
    ("fenced_block", parse_fenced_block),
    ("brace_span", parse_brace_span),
)


def extract_json_object(
    content: Any, *, preview_chars: int = DEFAULT_PREVIEW_CHARS
) -> ExtractedJson:
    if isinstance(content, dict):
        return ExtractedJson(payload=content, strategy="structured")

    if not isinstance(content, str) or not content.strip():
        raise UnparsableContentError(
            "Assistant content missing or empty",
            preview=truncate_preview(content, limit=preview_chars),
        )

    for name, strategy in EXTRACTION_STRATEGIES:
        parsed = strategy(content)
        if parsed is not None:
            return ExtractedJson(payload=parsed, strategy=name)

    raise UnparsableContentError(
        "Assistant content was not a JSON object",
        preview=truncate_preview(content, limit=preview_chars),
    )


def stamp_version(payload: dict[str, Any], *, default_version: int = 1) -> dict[str, Any]:
    if payload.get("version") is None:
        payload = {**payload, "version": default_version}
    return payload


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, dict):
        return parsed
    return None
