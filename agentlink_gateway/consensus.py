"""Multi-round consensus over the advisory panel.

Round 1 only seeds round 2: its votes become the peer transcript and feed the
evolution flag, but the final tally is computed from round-2 votes alone.

Tally rules:
- `votes[s]` counts parsed round-2 votes for signal s; `weighted_scores[s]`
  sums their confidence. Default votes (no usable signal in the reply)
  abstain from both.
- The winner is the signal with the highest weighted score. Ties go to the
  first signal in BUY, SELL, HOLD order. If no signal scores above zero the
  outcome is HOLD.
- agreement = votes for the winner / all round-2 votes * 100, rounded;
  0 when round 2 produced no votes.
- confidence = mean confidence of all round-2 votes; 0 when empty.
- evolved = some round-1 vote differs from the round-2 vote at the same panel
  index (a round-1 vote with no round-2 counterpart counts as a change).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from .deliberation import (
    RoundContext,
    ROUND_1_TEMPERATURE,
    ROUND_2_TEMPERATURE,
    MAX_REPLY_TOKENS,
    cross_examination_prompt,
    independent_prompt,
    run_round,
)
from .llm import ChatClient
from .market import MarketData
from .panel import AdvisorProfile, DEFAULT_PANEL
from .votes import Signal, SIGNAL_ORDER, Vote

logger = logging.getLogger(__name__)

ROUND_COUNT = 2


@dataclass(frozen=True)
class ConsensusOutcome:
    signal: Signal
    agreement: int
    confidence: float
    votes: Dict[str, int] = field(default_factory=dict)
    weighted_scores: Dict[str, int] = field(default_factory=dict)
    rounds: int = ROUND_COUNT
    evolved: bool = False


def _signals_changed(round1: Sequence[Vote], round2: Sequence[Vote]) -> bool:
    return any(i >= len(round2) or v.signal != round2[i].signal for i, v in enumerate(round1))


def aggregate(round1: Sequence[Vote], round2: Sequence[Vote]) -> ConsensusOutcome:
    votes = {s.value: 0 for s in SIGNAL_ORDER}
    weighted = {s.value: 0 for s in SIGNAL_ORDER}

    for v in round2:
        if not v.parsed:
            continue
        votes[v.signal.value] += 1
        weighted[v.signal.value] += v.confidence

    winner = Signal.HOLD
    best = 0
    for s in SIGNAL_ORDER:
        if weighted[s.value] > best:
            winner, best = s, weighted[s.value]

    total = len(round2)
    agreement = int(votes[winner.value] * 100 / total + 0.5) if total else 0
    confidence = sum(v.confidence for v in round2) / total if total else 0.0

    return ConsensusOutcome(
        signal=winner,
        agreement=agreement,
        confidence=confidence,
        votes=votes,
        weighted_scores=weighted,
        rounds=ROUND_COUNT,
        evolved=_signals_changed(round1, round2),
    )


def summarize(outcome: ConsensusOutcome, token: str, market: MarketData) -> str:
    shift = "Positions were refined through peer review." if outcome.evolved else "Analysis remained consistent."
    return (
        f"{outcome.signal.value} - After {outcome.rounds} rounds of deliberation, our AI council reached "
        f"{outcome.agreement}% consensus on {token} at ${market.price} "
        f"({market.trend} {abs(market.change):.2f}%). "
        f"Final confidence: {outcome.confidence:.0f}%. {shift}"
    )


@dataclass(frozen=True)
class Deliberation:
    """Everything one analysis request produced."""

    round_1: Tuple[Vote, ...]
    round_2: Tuple[Vote, ...]
    outcome: ConsensusOutcome
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        o = self.outcome
        return {
            "ai_consensus": {
                "signal": o.signal.value,
                "agreement": f"{o.agreement}%",
                "confidence": f"{o.confidence:.0f}%",
                "votes": dict(o.votes),
                "weighted_scores": dict(o.weighted_scores),
                "rounds": o.rounds,
                "evolution": "adjusted" if o.evolved else "consistent",
                "summary": self.summary,
            },
            "analyses_by_round": {
                "round_1": [v.to_dict() for v in self.round_1],
                "round_2": [v.to_dict() for v in self.round_2],
            },
        }


def degraded_analysis(token: str, market: MarketData, note: Optional[str] = None) -> Dict[str, Any]:
    """HOLD placeholder used when the panel cannot deliberate."""
    summary = market.headline(token)
    if note:
        summary = f"{summary}. {note}"
    return {
        "ai_consensus": {
            "signal": Signal.HOLD.value,
            "agreement": "N/A",
            "confidence": "0%",
            "votes": {},
            "weighted_scores": {},
            "rounds": 0,
            "evolution": None,
            "summary": summary,
        },
        "analyses_by_round": {"round_1": [], "round_2": []},
    }


class ConsensusEngine:
    """Runs the two-round deliberation across a fixed panel."""

    def __init__(
        self,
        client: ChatClient,
        panel: Sequence[AdvisorProfile] = DEFAULT_PANEL,
        *,
        round_1_temperature: float = ROUND_1_TEMPERATURE,
        round_2_temperature: float = ROUND_2_TEMPERATURE,
        max_tokens: int = MAX_REPLY_TOKENS,
    ):
        if not panel:
            raise ValueError("panel must contain at least one advisor")
        self.client = client
        self.panel = tuple(panel)
        self.round_1_temperature = float(round_1_temperature)
        self.round_2_temperature = float(round_2_temperature)
        self.max_tokens = int(max_tokens)

    async def deliberate(self, token: str, market: MarketData) -> Deliberation:
        logger.info("Convening panel of %d advisors for %s", len(self.panel), token)

        round1 = await run_round(
            1,
            self.panel,
            independent_prompt,
            RoundContext(token=token, market=market),
            self.client,
            temperature=self.round_1_temperature,
            max_tokens=self.max_tokens,
        )
        round2 = await run_round(
            2,
            self.panel,
            cross_examination_prompt,
            RoundContext(token=token, market=market, peer_votes=tuple(round1)),
            self.client,
            temperature=self.round_2_temperature,
            max_tokens=self.max_tokens,
        )

        outcome = aggregate(round1, round2)
        logger.info(
            "Consensus for %s: %s, agreement %d%%, confidence %.0f%%, votes %s",
            token, outcome.signal.value, outcome.agreement, outcome.confidence, outcome.votes,
        )
        return Deliberation(
            round_1=tuple(round1),
            round_2=tuple(round2),
            outcome=outcome,
            summary=summarize(outcome, token, market),
        )
