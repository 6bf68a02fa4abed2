from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator

# Top-level key -> suffix used in critiques ("[]" for arrays, "{}" for objects).
REQUIRED_SECTIONS: dict[str, str] = {
    "market_pulse": "[]",
    "cash_tracker": "{}",
    "portfolio_snapshot": "[]",
}

PLAN_SHAPE_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": list(REQUIRED_SECTIONS),
    "properties": {
        "market_pulse": {"type": "array"},
        "cash_tracker": {"type": "object"},
        "portfolio_snapshot": {"type": "array"},
    },
}

_VALIDATOR = Draft202012Validator(PLAN_SHAPE_SCHEMA)


@dataclass(frozen=True, slots=True)
class ShapeValidationResult:
    valid: bool
    missing_keys: list[str]
    errors: list[str]


def validate_plan_shape(payload: Any) -> ShapeValidationResult:
    if not isinstance(payload, dict):
        return ShapeValidationResult(
            valid=False,
            missing_keys=list(REQUIRED_SECTIONS),
            errors=["no JSON object"],
        )

    missing: set[str] = set()
    messages: list[str] = []
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda item: list(item.path))
    for error in errors:
        path = "/".join(str(item) for item in error.path)
        if error.validator == "required":
            missing.update(key for key in REQUIRED_SECTIONS if key not in payload)
        elif path in REQUIRED_SECTIONS:
            missing.add(path)
        messages.append(f"{path}: {error.message}" if path else error.message)

    ordered_missing = [key for key in REQUIRED_SECTIONS if key in missing]
    return ShapeValidationResult(
        valid=not messages,
        missing_keys=ordered_missing,
        errors=messages,
    )


def describe_invalid(result: ShapeValidationResult) -> str:
    if result.valid:
        return ""
    if not result.missing_keys:
        return "; ".join(result.errors) or "unknown shape issue"
    return "; ".join(
        f"missing {key}{REQUIRED_SECTIONS[key]}" for key in result.missing_keys
    )
