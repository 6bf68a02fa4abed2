"""Free-text hint extraction for position notes, status and sentiment words.

Pattern table (first match wins inside each group):

==============  ==========================================  =====================
group           pattern                                     result
==============  ==========================================  =====================
status hint     substring ``buy``                           ``BUY``
status hint     substring ``trim`` or ``sell``              ``TRIM``
status notes    word ``trim|reduce|sell|take profit``       ``TRIM``
status notes    word ``add|buy|enter|scale in``             ``BUY``
sentiment       prefix ``bull``                             ``Bullish``
sentiment       prefix ``bear``                             ``Bearish``
resistance      ``A-B`` / ``A–B`` (first numeric range)     ``"A–B"``
breakout        ``> N`` (not the ``->`` arrow)              ``gt = N``
breakout        ``above|over|break(s) above|over N``        ``gt = N``
targets         ``to|->|→ N[/M...]`` after the breakout     ``targets = [N, M]``
==============  ==========================================  =====================

Anything that matches no row falls back to ``HOLD`` / ``Neutral`` / ``None``.
The symbolic ``>`` form is preferred over the word forms. Targets are only read
after the breakout trigger; without a trigger a ``to N`` phrase is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

_NUMBER = r"(\d+(?:\.\d+)?)"

STATUS_NOTE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(trim|reduce|sell|take\s*profits?)\b", re.IGNORECASE), "TRIM"),
    (re.compile(r"\b(add|buy|enter|scale\s*in)\b", re.IGNORECASE), "BUY"),
)
SENTIMENT_PREFIXES: tuple[tuple[str, str], ...] = (
    ("bull", "Bullish"),
    ("bear", "Bearish"),
)
RESISTANCE_RANGE_RE = re.compile(_NUMBER + r"\s*[-–—]\s*" + _NUMBER)
BREAKOUT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?<!-)>\s*=?\s*" + _NUMBER),
    re.compile(
        r"\b(?:breaks?\s+(?:above|over)|above|over)\s*\$?" + _NUMBER,
        re.IGNORECASE,
    ),
)
TARGET_RE = re.compile(
    r"(?:\bto\b|->|→)\s*\$?" + _NUMBER + r"((?:\s*[/,]\s*\$?\d+(?:\.\d+)?)*)",
    re.IGNORECASE,
)
_EXTRA_TARGET_RE = re.compile(_NUMBER)

DEFAULT_STATUS = "HOLD"
DEFAULT_SENTIMENT = "Neutral"


@dataclass(frozen=True, slots=True)
class LevelHints:
    resistance: str | None = None
    breakout_gt: int | float | None = None
    targets: list[int | float] = field(default_factory=list)

    @property
    def breakout_watch(self) -> dict[str, Any] | None:
        if self.breakout_gt is None:
            return None
        return {"gt": self.breakout_gt, "targets": list(self.targets)}


def status_from_hint(value: Any) -> str:
    text = str(value or "").upper()
    if "BUY" in text:
        return "BUY"
    if "TRIM" in text or "SELL" in text:
        return "TRIM"
    return DEFAULT_STATUS


def status_from_notes(notes: Any) -> str | None:
    text = str(notes or "")
    for pattern, status in STATUS_NOTE_PATTERNS:
        if pattern.search(text):
            return status
    return None


def resolve_status(hint: Any, notes: Any) -> str:
    if hint not in (None, ""):
        return status_from_hint(hint)
    return status_from_hint(status_from_notes(notes))


def sentiment_from_hint(value: Any) -> str:
    text = str(value or "").strip().lower()
    for prefix, sentiment in SENTIMENT_PREFIXES:
        if text.startswith(prefix):
            return sentiment
    return DEFAULT_SENTIMENT


def extract_levels(notes: Any) -> LevelHints:
    text = str(notes or "")
    if not text.strip():
        return LevelHints()

    resistance = None
    range_match = RESISTANCE_RANGE_RE.search(text)
    if range_match:
        resistance = f"{range_match.group(1)}–{range_match.group(2)}"

    breakout_match = None
    for pattern in BREAKOUT_PATTERNS:
        breakout_match = pattern.search(text)
        if breakout_match:
            break

    if breakout_match is None:
        return LevelHints(resistance=resistance)

    targets: list[int | float] = []
    target_match = TARGET_RE.search(text, breakout_match.end())
    if target_match:
        targets.append(to_number(target_match.group(1)))
        targets.extend(
            to_number(extra) for extra in _EXTRA_TARGET_RE.findall(target_match.group(2))
        )

    return LevelHints(
        resistance=resistance,
        breakout_gt=to_number(breakout_match.group(1)),
        targets=targets,
    )


def to_number(raw: str) -> int | float:
    value = float(raw)
    if value.is_integer():
        return int(value)
    return value
