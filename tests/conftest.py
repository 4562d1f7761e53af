"""Shared fakes and builders for the AgentLink test-suite.

Nothing here touches a network: receipts come from FakeReceiptSource,
advisor replies from FakeChatClient and market data from StaticFeed.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from agentlink_gateway.chain import EventLog, ReceiptSource, TransactionReceipt
from agentlink_gateway.config import GatewayConfig, DEFAULT_TOKEN_CONTRACT
from agentlink_gateway.llm import ChatClient
from agentlink_gateway.market import MarketData, MarketFeed
from agentlink_gateway.transfers import TRANSFER_EVENT_TOPIC


SELLER = "0x" + "5e" * 20
PAYER = "0x" + "a1" * 20
STRANGER = "0x" + "b2" * 20
TOKEN = DEFAULT_TOKEN_CONTRACT.lower()
OTHER_TOKEN = "0x" + "c3" * 20
PRICE = 10000
TX_HASH = "0x" + "ab" * 32


def pad_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(sender: str, recipient: str, amount: int, contract: str = TOKEN) -> EventLog:
    return EventLog(
        address=contract,
        topics=(TRANSFER_EVENT_TOPIC, pad_topic(sender), pad_topic(recipient)),
        data="0x" + format(amount, "064x"),
    )


def make_receipt(*logs: EventLog, status: int = 1) -> TransactionReceipt:
    return TransactionReceipt(transaction_hash=TX_HASH, status=status, logs=tuple(logs), block_number=1)


class FakeReceiptSource(ReceiptSource):
    """Plays back a script of receipts, Nones and exceptions.

    Once the script is exhausted the last entry repeats.
    """

    def __init__(self, script: Sequence[Union[TransactionReceipt, None, Exception]]):
        self.script = list(script) or [None]
        self.calls: List[str] = []

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        idx = min(len(self.calls), len(self.script) - 1)
        self.calls.append(tx_hash)
        item = self.script[idx]
        if isinstance(item, Exception):
            raise item
        return item


class FakeChatClient(ChatClient):
    """Returns scripted replies per model, in call order.

    A reply may be a string, an exception instance (raised) or a callable
    taking the prompt.
    """

    def __init__(self, replies: Dict[str, List[Any]]):
        self.replies = {k: list(v) for k, v in replies.items()}
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, model: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        self.calls.append({"model": model, "prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        queue = self.replies.get(model) or []
        if not queue:
            raise RuntimeError(f"no scripted reply for {model}")
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


class StaticFeed(MarketFeed):
    name = "Static"

    def __init__(self, data: Optional[MarketData]):
        self.data = data
        self.calls: List[str] = []

    def fetch(self, token: str) -> Optional[MarketData]:
        self.calls.append(token)
        return self.data


class RecordingSleep:
    def __init__(self):
        self.waits: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


def reply(signal: str, confidence: int, reason: str = "Momentum looks constructive.") -> str:
    return f"SIGNAL: {signal}\nCONFIDENCE: {confidence}%\nREASON: {reason}"


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(seller_wallet=SELLER, token_contract=TOKEN, price_units=PRICE, poll_interval_seconds=0.0)


@pytest.fixture
def market() -> MarketData:
    return MarketData(source="Static", price=0.1234, volume=1_500_000.0, change=-2.5)


@pytest.fixture
def recording_sleep() -> Callable:
    return RecordingSleep()
