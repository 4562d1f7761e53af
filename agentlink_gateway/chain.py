"""Blockchain receipt access.

Receipts are read from a JSON-RPC node through a small `ReceiptSource`
interface so the payment gate can be exercised without a node. The production
source wraps web3.py; its blocking calls run in a worker thread.

Polling semantics (ReceiptPoller):
- a missing receipt means "not yet mined": wait, then retry
- a node/transport error is logged and consumes an attempt; it never aborts early
- the interval is fixed; there is no wait after the final attempt
- after `max_attempts` the poller yields None
"""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from web3 import Web3
from web3.exceptions import TransactionNotFound

from .errors import al_error, AL_E_RPC_UNAVAILABLE

logger = logging.getLogger(__name__)

RECEIPT_STATUS_SUCCESS = 1


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value).lower()


@dataclass(frozen=True)
class EventLog:
    """One emitted contract event.

    topics[0] identifies the event type; topics[1:] are indexed arguments
    (addresses left-padded to 32 bytes). `data` holds the non-indexed
    arguments as a 0x-prefixed hex string.
    """

    address: str
    topics: Tuple[str, ...]
    data: str

    @classmethod
    def from_rpc(cls, raw: Mapping[str, Any]) -> "EventLog":
        return cls(
            address=str(raw.get("address", "")),
            topics=tuple(_to_hex(t) for t in (raw.get("topics") or [])),
            data=_to_hex(raw.get("data") or "0x"),
        )


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    status: int
    logs: Tuple[EventLog, ...] = field(default_factory=tuple)
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RECEIPT_STATUS_SUCCESS

    @classmethod
    def from_rpc(cls, raw: Mapping[str, Any]) -> "TransactionReceipt":
        tx_hash = raw.get("transactionHash")
        block = raw.get("blockNumber")
        return cls(
            transaction_hash=_to_hex(tx_hash) if tx_hash is not None else "",
            status=int(raw.get("status", 0) or 0),
            logs=tuple(EventLog.from_rpc(log) for log in (raw.get("logs") or [])),
            block_number=int(block) if block is not None else None,
        )


class ReceiptSource(abc.ABC):
    """Looks up transaction receipts by hash."""

    @abc.abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Return the receipt, or None if the transaction is not mined yet.

        Transport failures are raised.
        """
        raise NotImplementedError


class Web3ReceiptSource(ReceiptSource):
    """Receipt lookups against an HTTP JSON-RPC provider."""

    def __init__(self, rpc_url: str, *, timeout_s: float = 10.0, w3: Optional[Web3] = None):
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": float(timeout_s)}))

    def _lookup(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        try:
            raw = await asyncio.to_thread(self._lookup, tx_hash)
        except Exception as e:
            raise al_error(
                AL_E_RPC_UNAVAILABLE,
                "receipt lookup failed",
                retryable=True,
                http_status=503,
                rpc_url=self.rpc_url,
                error=f"{type(e).__name__}: {e}",
            ) from e
        if raw is None:
            return None
        return TransactionReceipt.from_rpc(raw)


class ReceiptPoller:
    """Fixed-interval receipt polling with a bounded number of attempts."""

    def __init__(
        self,
        source: ReceiptSource,
        *,
        max_attempts: int = 5,
        interval_s: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.source = source
        self.max_attempts = int(max_attempts)
        self.interval_s = float(interval_s)
        self._sleep = sleep

    async def poll(self, tx_hash: str) -> Optional[TransactionReceipt]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                receipt = await self.source.get_receipt(tx_hash)
            except Exception as e:
                logger.warning("Receipt lookup error for %s (attempt %d/%d): %s", tx_hash, attempt, self.max_attempts, e)
                receipt = None
            else:
                if receipt is not None:
                    logger.info("Receipt found for %s on attempt %d", tx_hash, attempt)
                    return receipt
                logger.debug("Receipt for %s not available yet (attempt %d/%d)", tx_hash, attempt, self.max_attempts)

            if attempt < self.max_attempts:
                await self._sleep(self.interval_s)

        logger.info("Receipt for %s not found after %d attempts", tx_hash, self.max_attempts)
        return None


async def poll_receipt(
    source: ReceiptSource,
    tx_hash: str,
    max_attempts: int = 5,
    interval_s: float = 2.0,
) -> Optional[TransactionReceipt]:
    """Convenience wrapper around ReceiptPoller."""
    return await ReceiptPoller(source, max_attempts=max_attempts, interval_s=interval_s).poll(tx_hash)
