"""Advisor votes and reply parsing.

Advisors are asked to answer in a three-field format:

    SIGNAL: BUY|SELL|HOLD
    CONFIDENCE: 0-100
    REASON: one sentence

Parsing is lenient. `parse_reply` returns either a `ParsedVote` (the signal
was recognised; a missing confidence or reason falls back per field) or a
`DefaultVote` (no usable signal; HOLD is assumed). Both become a `Vote`, so an
advisor whose reply drifts from the format still takes part in the round.
Default votes abstain from the signal tally; see consensus.aggregate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from .panel import AdvisorProfile

DEFAULT_CONFIDENCE = 50
ROUNDS = (1, 2)


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


# Iteration order doubles as the tie-break order.
SIGNAL_ORDER = (Signal.BUY, Signal.SELL, Signal.HOLD)

_SIGNAL_RE = re.compile(r"SIGNAL:\**\s*\[?\s*(BUY|SELL|HOLD)\b", re.IGNORECASE)
_CONFIDENCE_RE = re.compile(r"CONFIDENCE:\**\s*\[?\s*(\d+)", re.IGNORECASE)
_REASON_RE = re.compile(r"REASON:\**\s*(.+)", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedVote:
    signal: Signal
    confidence: int
    reason: str


@dataclass(frozen=True)
class DefaultVote:
    confidence: int
    reason: str

    @property
    def signal(self) -> Signal:
        return Signal.HOLD


ParseResult = Union[ParsedVote, DefaultVote]


@dataclass(frozen=True)
class Vote:
    """One advisor's position in one round. Immutable once created."""

    advisor: str
    perspective: str
    round: int
    signal: Signal
    confidence: int
    reason: str
    parsed: bool = True

    def __post_init__(self) -> None:
        if self.round not in ROUNDS:
            raise ValueError(f"round must be one of {ROUNDS}, got {self.round}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence out of range: {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "model": self.advisor,
            "perspective": self.perspective,
            "signal": self.signal.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "parsed": self.parsed,
        }

    def transcript_line(self) -> str:
        return f"{self.advisor}: {self.signal.value} ({self.confidence}%) - {self.reason}"


def parse_reply(text: str, default_reason: str) -> ParseResult:
    """Parse a free-text advisor reply, defaulting whatever is missing."""
    text = text or ""
    confidence_match = _CONFIDENCE_RE.search(text)
    confidence = min(100, int(confidence_match.group(1))) if confidence_match else DEFAULT_CONFIDENCE
    reason_match = _REASON_RE.search(text)
    reason = reason_match.group(1).strip() if reason_match else ""
    reason = reason or default_reason

    signal_match = _SIGNAL_RE.search(text)
    if signal_match is None:
        return DefaultVote(confidence=confidence, reason=reason)
    return ParsedVote(signal=Signal(signal_match.group(1).upper()), confidence=confidence, reason=reason)


def make_vote(advisor: AdvisorProfile, round_number: int, result: ParseResult) -> Vote:
    return Vote(
        advisor=advisor.name,
        perspective=advisor.perspective,
        round=round_number,
        signal=result.signal,
        confidence=result.confidence,
        reason=result.reason,
        parsed=isinstance(result, ParsedVote),
    )
