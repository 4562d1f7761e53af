"""ERC-20 Transfer event matching.

A qualifying transfer is a log that:
- was emitted by the expected token contract (address compared case-insensitively)
- is a `Transfer(address,address,uint256)` event with exactly three topics
- pays the expected recipient, and (direct mode only) comes from the expected sender
- carries an amount >= the minimum, compared as arbitrary-precision integers
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from web3 import Web3

from .chain import EventLog, TransactionReceipt

logger = logging.getLogger(__name__)

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_EVENT_TOPIC = Web3.to_hex(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE)).lower()

_ADDRESS_HEX_LEN = 40


def topic_to_address(topic: str) -> str:
    """Strip the 32-byte left padding from an indexed address topic."""
    return "0x" + topic[-_ADDRESS_HEX_LEN:].lower()


def transfer_amount(log: EventLog) -> int:
    data = log.data or "0x"
    digits = data[2:] if data.startswith("0x") else data
    if not digits:
        return 0
    return int(digits, 16)


def format_units(amount: int, decimals: int) -> str:
    """Render an integer token amount with the given number of decimals."""
    return str(Decimal(int(amount)).scaleb(-int(decimals)))


def find_qualifying_transfer(
    receipt: TransactionReceipt,
    token_contract: str,
    min_amount: int,
    *,
    to: str,
    from_: Optional[str] = None,
) -> Optional[EventLog]:
    """Return the transfer log paying `to` at least `min_amount`, or None.

    With `from_` unset (facilitator mode) only the recipient is checked. With
    `from_` set (direct mode) the sender must match as well. Only the first
    structurally matching log is considered; if its amount is short the
    receipt does not qualify.
    """
    contract = token_contract.lower()
    recipient = to.lower()
    sender = from_.lower() if from_ else None

    match = next((log for log in receipt.logs if _matches_parties(log, contract, recipient, sender)), None)
    if match is None:
        return None

    try:
        amount = transfer_amount(match)
    except ValueError:
        logger.warning("Transfer log carries malformed data: %r", match.data)
        return None
    if amount < int(min_amount):
        logger.info("Transfer amount %d below required %d", amount, int(min_amount))
        return None
    return match


def _matches_parties(log: EventLog, contract: str, recipient: str, sender: Optional[str]) -> bool:
    if (log.address or "").lower() != contract:
        return False
    if len(log.topics) != 3 or log.topics[0].lower() != TRANSFER_EVENT_TOPIC:
        return False
    if topic_to_address(log.topics[2]) != recipient:
        return False
    return sender is None or topic_to_address(log.topics[1]) == sender
