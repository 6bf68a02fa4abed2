from __future__ import annotations

import math
from typing import Any

from tradeplan.pipeline.hints import (
    extract_levels,
    resolve_status,
    sentiment_from_hint,
)

DEFAULT_BENCHMARK = "QQQ"
DEFAULT_PLAN_VERSION = 1

PULSE_BY_SENTIMENT: dict[str, tuple[str, str]] = {
    "Bullish": ("outperform", "bullish setup"),
    "Bearish": ("lagging", "under pressure"),
    "Neutral": ("inline", "holding steady"),
}
PULSE_NOTES: dict[str, str] = dict(PULSE_BY_SENTIMENT.values())
FLOW_BY_SENTIMENT: dict[str, str] = {
    "Bullish": "Positive tilt",
    "Bearish": "Cautious",
    "Neutral": "Neutral",
}
VALID_SIGNALS = frozenset(PULSE_NOTES)

_QTY_KEYS = ("qty", "quantity", "shares")
_AVG_KEYS = ("avg", "avg_cost", "average_cost", "cost_basis")


def coerce_to_schema(payload: Any, state: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a best-effort model reply into the canonical plan shape.

    ``state`` is the sanitized request state; it supplies the owned tickers,
    benchmark names and cash figures used as fallbacks. Tickers that the state
    does not own never make it into the result.
    """
    out: dict[str, Any] = dict(payload) if isinstance(payload, dict) else {}
    owned = _owned_positions(state)
    benchmarks = state.get("benchmarks")
    if not isinstance(benchmarks, dict):
        benchmarks = {}

    out.pop("positions", None)
    out["version"] = _coerce_version(out.get("version"))

    snapshot = payload.get("portfolio_snapshot") if isinstance(payload, dict) else None
    if isinstance(snapshot, list):
        out["portfolio_snapshot"] = _normalize_snapshot(snapshot, owned)
    else:
        source = _snapshot_source(payload, state)
        out["portfolio_snapshot"] = _derive_snapshot(source, owned)

    pulse = out.get("market_pulse")
    if isinstance(pulse, list):
        out["market_pulse"] = _normalize_pulse(pulse, owned, benchmarks)
    else:
        out["market_pulse"] = _derive_pulse(out["portfolio_snapshot"], benchmarks)

    tracker = out.get("cash_tracker")
    if isinstance(tracker, dict):
        out["cash_tracker"] = _normalize_cash_tracker(
            tracker, state.get("cash"), out["portfolio_snapshot"]
        )
    else:
        derived = _derive_cash_tracker(state.get("cash"), out["portfolio_snapshot"])
        if derived is None:
            out.pop("cash_tracker", None)
        else:
            out["cash_tracker"] = derived

    return out


def num_or_none(value: Any) -> int | float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").rstrip("%").strip()
        if not cleaned:
            return None
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() and "." not in cleaned else parsed
    return None


def normalize_ticker(value: Any) -> str:
    return str(value or "").strip().upper()


def build_playbook(snapshot: list[dict[str, Any]]) -> str:
    buyables = [item["ticker"] for item in snapshot if item.get("status") == "BUY"]
    if buyables:
        return f"Watch breakouts on {', '.join(buyables)}; deploy only on confirmation."
    return "Maintain flexibility; deploy on high-conviction breakouts only."


def _owned_positions(state: dict[str, Any]) -> dict[str, dict[str, Any]]:
    owned: dict[str, dict[str, Any]] = {}
    for position in state.get("positions") or []:
        if not isinstance(position, dict):
            continue
        ticker = normalize_ticker(position.get("ticker"))
        if ticker and ticker not in owned:
            owned[ticker] = position
    return owned


def _coerce_version(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_PLAN_VERSION
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return DEFAULT_PLAN_VERSION


def _snapshot_source(payload: Any, state: dict[str, Any]) -> list[Any]:
    if isinstance(payload, dict) and isinstance(payload.get("positions"), list):
        return payload["positions"]
    return list(state.get("positions") or [])


def _first_present(source: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return None


def _derive_snapshot(
    positions: list[Any], owned: dict[str, dict[str, Any]]
) -> list[dict[str, Any]]:
    snapshot: list[dict[str, Any]] = []
    seen: set[str] = set()
    for position in positions:
        if not isinstance(position, dict):
            continue
        ticker = normalize_ticker(position.get("ticker"))
        if ticker not in owned or ticker in seen:
            continue
        seen.add(ticker)
        fallback = owned[ticker]
        merged = {**fallback, **{k: v for k, v in position.items() if v is not None}}
        notes = merged.get("notes")
        sentiment = sentiment_from_hint(merged.get("sentiment"))
        levels = extract_levels(notes)
        snapshot.append(
            {
                "ticker": ticker,
                "status": resolve_status(
                    merged.get("status") or merged.get("action"), notes
                ),
                "sentiment": sentiment,
                "price": num_or_none(merged.get("price")),
                "position": {
                    "qty": num_or_none(_first_present(merged, _QTY_KEYS)),
                    "avg": num_or_none(_first_present(merged, _AVG_KEYS)),
                },
                "pl_pct": num_or_none(merged.get("pl_pct")),
                "flow": _text_or(merged.get("flow"), FLOW_BY_SENTIMENT[sentiment]),
                "resistance": levels.resistance,
                "breakout_watch": levels.breakout_watch,
                "idea": _text_or(notes, ""),
            }
        )
    return snapshot


def _normalize_snapshot(
    items: list[Any], owned: dict[str, dict[str, Any]]
) -> list[dict[str, Any]]:
    snapshot: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        ticker = normalize_ticker(item.get("ticker"))
        if ticker not in owned or ticker in seen:
            continue
        seen.add(ticker)
        fallback = owned[ticker]
        notes = item.get("notes") or item.get("idea") or fallback.get("notes")
        sentiment = sentiment_from_hint(item.get("sentiment") or fallback.get("sentiment"))
        levels = extract_levels(notes)
        position = item.get("position") if isinstance(item.get("position"), dict) else {}
        qty = _first_present(position, _QTY_KEYS)
        avg = _first_present(position, _AVG_KEYS)
        price = item.get("price")
        if price is None:
            price = fallback.get("price")
        snapshot.append(
            {
                "ticker": ticker,
                "status": resolve_status(
                    item.get("status") or fallback.get("status"), notes
                ),
                "sentiment": sentiment,
                "price": num_or_none(price),
                "position": {
                    "qty": num_or_none(
                        qty if qty is not None else _first_present(fallback, _QTY_KEYS)
                    ),
                    "avg": num_or_none(
                        avg if avg is not None else _first_present(fallback, _AVG_KEYS)
                    ),
                },
                "pl_pct": num_or_none(item.get("pl_pct")),
                "flow": _text_or(item.get("flow"), FLOW_BY_SENTIMENT[sentiment]),
                "resistance": _text_or(item.get("resistance"), None) or levels.resistance,
                "breakout_watch": _normalize_breakout(item.get("breakout_watch"))
                or levels.breakout_watch,
                "idea": _text_or(item.get("idea") or item.get("notes"), "")
                or _text_or(fallback.get("notes"), ""),
            }
        )
    return snapshot


def _normalize_breakout(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    gt = num_or_none(value.get("gt"))
    raw_targets = value.get("targets")
    if not isinstance(raw_targets, list):
        raw_targets = [raw_targets] if raw_targets is not None else []
    targets = [number for number in map(num_or_none, raw_targets) if number is not None]
    if gt is None and not targets:
        return None
    return {"gt": gt, "targets": targets}


def _derive_pulse(
    snapshot: list[dict[str, Any]], benchmarks: dict[str, Any]
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for item in snapshot:
        signal, note = PULSE_BY_SENTIMENT.get(
            item["sentiment"], PULSE_BY_SENTIMENT["Neutral"]
        )
        rows.append(
            {
                "ticker": item["ticker"],
                "benchmark": _benchmark_for(item["ticker"], benchmarks),
                "signal": signal,
                "note": note,
            }
        )
    return rows


def _normalize_pulse(
    rows: list[Any], owned: dict[str, dict[str, Any]], benchmarks: dict[str, Any]
) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        ticker = normalize_ticker(row.get("ticker"))
        if ticker not in owned:
            continue
        signal = str(row.get("signal") or "").strip().lower()
        if signal not in VALID_SIGNALS:
            signal = "inline"
        normalized.append(
            {
                "ticker": ticker,
                "benchmark": _text_or(row.get("benchmark"), None)
                or _benchmark_for(ticker, benchmarks),
                "signal": signal,
                "note": _text_or(row.get("note"), PULSE_NOTES[signal]),
            }
        )
    return normalized


def _benchmark_for(ticker: str, benchmarks: dict[str, Any]) -> str:
    for key, value in benchmarks.items():
        if normalize_ticker(key) == ticker and value:
            return str(value)
    return DEFAULT_BENCHMARK


def _derive_cash_tracker(
    cash: Any, snapshot: list[dict[str, Any]]
) -> dict[str, Any] | None:
    if not isinstance(cash, dict):
        return None
    return _normalize_cash_tracker({}, cash, snapshot)


def _normalize_cash_tracker(
    tracker: dict[str, Any], cash: Any, snapshot: list[dict[str, Any]]
) -> dict[str, Any]:
    cash_data = cash if isinstance(cash, dict) else {}

    def pick(key: str) -> int | float | None:
        value = num_or_none(tracker.get(key))
        if value is None:
            value = num_or_none(cash_data.get(key))
        return value

    sleeve = pick("sleeve_value")
    available = pick("cash_available")
    invested = pick("invested")
    if invested is None and sleeve is not None and available is not None:
        invested = sleeve - available

    triggers = tracker.get("active_triggers")
    if not isinstance(triggers, list):
        triggers = []

    return {
        **tracker,
        "sleeve_value": sleeve,
        "cash_available": available,
        "invested": invested,
        "active_triggers": [str(trigger) for trigger in triggers if trigger is not None],
        "playbook": _text_or(tracker.get("playbook"), build_playbook(snapshot)),
    }


def _text_or(value: Any, default: str | None) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default
