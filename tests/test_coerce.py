from __future__ import annotations

from typing import Any

from tradeplan.pipeline.canonicalize import sanitize_state
from tradeplan.pipeline.coerce import (
    DEFAULT_BENCHMARK,
    build_playbook,
    coerce_to_schema,
    num_or_none,
)


def _state(**overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "cash": {"sleeve_value": 10_000, "cash_available": 2_500},
        "benchmarks": {"AMZN": "XLY", "nvda": "SMH"},
        "positions": [
            {
                "ticker": "amzn",
                "qty": 10,
                "avg": 180.5,
                "notes": "resistance 235-240, breakout >240 to 245",
                "sentiment": "bullish",
            },
            {"ticker": "NVDA", "quantity": "4", "avg_cost": "$450.25", "notes": "hold"},
        ],
    }
    raw.update(overrides)
    return sanitize_state(raw)


def test_flat_positions_reply_becomes_snapshot() -> None:
    state = sanitize_state(
        {"positions": [{"ticker": "amzn", "status": "buy", "sentiment": "bullish"}]}
    )

    result = coerce_to_schema(
        {"positions": [{"ticker": "amzn", "status": "buy", "sentiment": "bullish"}]},
        state,
    )

    assert len(result["portfolio_snapshot"]) == 1
    entry = result["portfolio_snapshot"][0]
    assert entry["ticker"] == "AMZN"
    assert entry["status"] == "BUY"
    assert entry["sentiment"] == "Bullish"
    assert "positions" not in result
    assert result["version"] == 1


def test_snapshot_derived_from_state_uses_note_levels() -> None:
    result = coerce_to_schema({}, _state())

    amzn, nvda = result["portfolio_snapshot"]
    assert amzn["resistance"] == "235–240"
    assert amzn["breakout_watch"] == {"gt": 240, "targets": [245]}
    assert amzn["position"] == {"qty": 10, "avg": 180.5}
    assert amzn["flow"] == "Positive tilt"
    assert nvda["position"] == {"qty": 4, "avg": 450.25}
    assert nvda["breakout_watch"] is None
    assert nvda["status"] == "HOLD"


def test_unowned_tickers_are_dropped_everywhere() -> None:
    payload = {
        "portfolio_snapshot": [
            {"ticker": "AMZN", "status": "HOLD"},
            {"ticker": "TSLA", "status": "BUY"},
        ],
        "market_pulse": [
            {"ticker": "tsla", "benchmark": "QQQ", "signal": "outperform", "note": "x"},
            {"ticker": "amzn", "signal": "LAGGING"},
        ],
    }

    result = coerce_to_schema(payload, _state())

    assert [item["ticker"] for item in result["portfolio_snapshot"]] == ["AMZN"]
    assert result["market_pulse"] == [
        {"ticker": "AMZN", "benchmark": "XLY", "signal": "lagging", "note": "under pressure"}
    ]


def test_present_snapshot_items_are_backfilled_from_input() -> None:
    payload = {
        "portfolio_snapshot": [
            {"ticker": "nvda", "position": {"qty": None}, "price": "512.10"},
        ]
    }

    result = coerce_to_schema(payload, _state())

    (entry,) = result["portfolio_snapshot"]
    assert entry["ticker"] == "NVDA"
    assert entry["price"] == 512.1
    assert entry["position"] == {"qty": 4, "avg": 450.25}
    assert entry["idea"] == "hold"
    assert entry["sentiment"] == "Neutral"


def test_market_pulse_derived_from_snapshot() -> None:
    state = _state(benchmarks=None)

    result = coerce_to_schema({}, state)

    assert result["market_pulse"] == [
        {
            "ticker": "AMZN",
            "benchmark": DEFAULT_BENCHMARK,
            "signal": "outperform",
            "note": "bullish setup",
        },
        {
            "ticker": "NVDA",
            "benchmark": DEFAULT_BENCHMARK,
            "signal": "inline",
            "note": "holding steady",
        },
    ]


def test_market_pulse_benchmark_lookup_is_case_insensitive() -> None:
    result = coerce_to_schema({}, _state())

    assert [row["benchmark"] for row in result["market_pulse"]] == ["XLY", "SMH"]


def test_cash_tracker_computed_from_state_cash() -> None:
    state = _state(
        positions=[{"ticker": "AMZN", "status": "buy"}, {"ticker": "NVDA"}]
    )

    result = coerce_to_schema({"cash_tracker": "n/a"}, state)

    assert result["cash_tracker"] == {
        "sleeve_value": 10_000,
        "cash_available": 2_500,
        "invested": 7_500,
        "active_triggers": [],
        "playbook": "Watch breakouts on AMZN; deploy only on confirmation.",
    }


def test_cash_tracker_keeps_model_values_and_fills_gaps() -> None:
    payload = {
        "cash_tracker": {
            "sleeve_value": "12,000",
            "invested": 9000,
            "active_triggers": ["AMZN > 240", None],
            "playbook": "  Stay patient.  ",
        }
    }

    result = coerce_to_schema(payload, _state())

    assert result["cash_tracker"] == {
        "sleeve_value": 12_000,
        "cash_available": 2_500,
        "invested": 9000,
        "active_triggers": ["AMZN > 240"],
        "playbook": "Stay patient.",
    }


def test_cash_tracker_stays_missing_without_state_cash() -> None:
    result = coerce_to_schema({"portfolio_snapshot": []}, _state(cash=None))

    assert "cash_tracker" not in result


def test_version_is_forced_to_int() -> None:
    assert coerce_to_schema({"version": 2.0}, _state())["version"] == 2
    assert coerce_to_schema({"version": "2"}, _state())["version"] == 1
    assert coerce_to_schema(None, _state())["version"] == 1


def test_num_or_none() -> None:
    assert num_or_none("1,250") == 1250
    assert num_or_none("-3.5%") == -3.5
    assert num_or_none(True) is None
    assert num_or_none("n/a") is None
    assert num_or_none(float("inf")) is None


def test_build_playbook_without_buys() -> None:
    assert build_playbook([{"ticker": "AMZN", "status": "HOLD"}]) == (
        "Maintain flexibility; deploy on high-conviction breakouts only."
    )
