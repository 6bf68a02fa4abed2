from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from tradeplan.utils.error_taxonomy import InputError

PLAN_KEY_LENGTH = 32
SANITIZED_FIELDS = ("cash", "benchmarks", "positions")


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    state: dict[str, Any]
    plan_key: str


def sanitize_state(raw_state: Any) -> dict[str, Any]:
    if not isinstance(raw_state, dict):
        raise InputError("Missing 'state' object")

    positions = raw_state.get("positions")
    return {
        "cash": raw_state.get("cash"),
        "benchmarks": raw_state.get("benchmarks"),
        "positions": list(positions) if isinstance(positions, list) else [],
    }


def _integral_floats_to_int(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _integral_floats_to_int(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_integral_floats_to_int(item) for item in value]
    return value


def canonical_json(state: dict[str, Any]) -> str:
    # 10 and 10.0 must serialize identically
    return json.dumps(
        _integral_floats_to_int(state),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def compute_plan_key(sanitized_state: dict[str, Any]) -> str:
    try:
        encoded = canonical_json(sanitized_state).encode("utf-8")
    except (TypeError, ValueError) as error:
        raise InputError(f"State is not JSON-serializable: {error}") from error
    digest = hashlib.sha256(encoded).hexdigest()
    return digest[:PLAN_KEY_LENGTH]


def canonicalize_request(raw_state: Any) -> CanonicalRequest:
    state = sanitize_state(raw_state)
    return CanonicalRequest(state=state, plan_key=compute_plan_key(state))


def is_plan_key(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != PLAN_KEY_LENGTH:
        return False
    return all(char in "0123456789abcdef" for char in value)
