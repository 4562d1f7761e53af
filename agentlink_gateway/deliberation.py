"""One deliberation round: consult every advisor once and collect votes.

Round 1 asks each advisor for an independent read of the market data.
Round 2 repeats the market data and adds the round-1 transcript as peer input.

Advisors are consulted one at a time, in panel order. A failing advisor
(timeout, API error) is logged and skipped for that round; the rest of the
panel still votes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .llm import ChatClient
from .market import MarketData
from .metrics import record_advisor_call
from .panel import AdvisorProfile
from .votes import Vote, make_vote, parse_reply, ParsedVote

logger = logging.getLogger(__name__)

ROUND_1_TEMPERATURE = 0.7
ROUND_2_TEMPERATURE = 0.8
MAX_REPLY_TOKENS = 150

DEFAULT_REASONS = {
    1: "Analysis complete",
    2: "Analysis refined",
}

_REPLY_FORMAT = """SIGNAL: [BUY/SELL/HOLD]
CONFIDENCE: [0-100]%"""


@dataclass(frozen=True)
class RoundContext:
    """What every advisor sees in a round."""

    token: str
    market: MarketData
    peer_votes: Tuple[Vote, ...] = ()

    def peer_transcript(self) -> str:
        return "\n".join(v.transcript_line() for v in self.peer_votes)


PromptBuilder = Callable[[AdvisorProfile, RoundContext], str]


def _fmt_volume(volume: Optional[float]) -> str:
    if volume is None:
        return "N/A"
    return f"{float(volume):,.2f}"


def independent_prompt(advisor: AdvisorProfile, ctx: RoundContext) -> str:
    m = ctx.market
    return f"""You are a {advisor.perspective} crypto trader ({advisor.specialty}).

Market Data for {ctx.token}:
- Price: ${m.price}
- 24h Change: {m.change}%
- Volume: ${_fmt_volume(m.volume)}

Provide analysis in EXACT format:
{_REPLY_FORMAT}
REASON: [One detailed sentence]"""


def cross_examination_prompt(advisor: AdvisorProfile, ctx: RoundContext) -> str:
    m = ctx.market
    return f"""You are a {advisor.perspective} crypto trader.

Your colleague's analysis:
{ctx.peer_transcript()}

Current {ctx.token} price: ${m.price}, change: {m.change}%

Review the analysis above. Do you:
- AGREE with the signals?
- Want to CHANGE your position?
- Adjust your CONFIDENCE?

Respond in EXACT format:
{_REPLY_FORMAT}
REASON: [Why you agree/disagree with peer analysis]"""


async def run_round(
    round_number: int,
    advisors: Sequence[AdvisorProfile],
    prompt_builder: PromptBuilder,
    context: RoundContext,
    client: ChatClient,
    *,
    temperature: float,
    max_tokens: int = MAX_REPLY_TOKENS,
) -> List[Vote]:
    """Consult each advisor once and return the votes in panel order."""
    default_reason = DEFAULT_REASONS.get(round_number, "Analysis complete")
    votes: List[Vote] = []

    for advisor in advisors:
        prompt = prompt_builder(advisor, context)
        try:
            reply = await client.complete(advisor.model, prompt, temperature=temperature, max_tokens=max_tokens)
        except Exception as e:
            logger.warning("Round %d: advisor %s failed: %s: %s", round_number, advisor.name, type(e).__name__, e)
            record_advisor_call(round_number, "error")
            continue

        result = parse_reply(reply, default_reason)
        if isinstance(result, ParsedVote):
            record_advisor_call(round_number, "ok")
        else:
            logger.info("Round %d: advisor %s reply had no usable signal; defaulting", round_number, advisor.name)
            record_advisor_call(round_number, "default")

        vote = make_vote(advisor, round_number, result)
        votes.append(vote)
        logger.info("Round %d: %s -> %s (%d%%)", round_number, advisor.name, vote.signal.value, vote.confidence)

    return votes
