"""Payment gate (HTTP 402 flow).

Per request:

    no tx hash         -> invoice (payment-required body)
    tx hash present    -> poll receipt -> match Transfer log -> allow | deny

Two verification modes:
- facilitator: the proof only has to show funds reached the seller
- direct: the payer address header binds the sender as well

The gate fails closed. Malformed headers, missing or failed receipts, and logs
that do not qualify all deny; so does any unexpected exception raised while
verifying.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from web3 import Web3

from . import audit_log
from .audit_log import AuditBuffer
from .chain import ReceiptPoller
from .config import GatewayConfig
from .metrics import record_invoice, record_verification
from .transfers import find_qualifying_transfer, format_units, transfer_amount

logger = logging.getLogger(__name__)

MODE_FACILITATOR = "facilitator"
MODE_DIRECT = "direct"

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class VerificationRequest:
    """A payment claim taken from request headers."""

    transaction_hash: str
    payer_address: Optional[str] = None

    @property
    def mode(self) -> str:
        return MODE_DIRECT if self.payer_address else MODE_FACILITATOR

    @classmethod
    def from_headers(cls, headers: Any) -> Optional["VerificationRequest"]:
        """Build a request from HTTP headers, or None if no hash was sent."""
        tx_hash = headers.get("x-payment-hash") or headers.get("payment-hash")
        if not tx_hash:
            return None
        payer = headers.get("x-user-address") or headers.get("user-address")
        return cls(transaction_hash=str(tx_hash).strip(), payer_address=(str(payer).strip() or None) if payer else None)


@dataclass(frozen=True)
class PaymentScheme:
    network: str
    currency: str
    amount: str
    to: str
    token: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "network": self.network,
            "currency": self.currency,
            "amount": self.amount,
            "to": self.to,
            "token": self.token,
        }


class PaymentGate:
    """Verifies on-chain stablecoin payments before a request may proceed."""

    def __init__(self, config: GatewayConfig, poller: ReceiptPoller, audit: AuditBuffer):
        self.config = config
        self.poller = poller
        self.audit = audit

    def scheme(self) -> PaymentScheme:
        return PaymentScheme(
            network=self.config.network,
            currency=self.config.currency,
            amount=str(self.config.price_units),
            to=self.config.seller_wallet,
            token=self.config.token_contract,
        )

    def invoice(self) -> Dict[str, Any]:
        """Payment-required body for a request without proof of payment."""
        scheme = self.scheme()
        self.audit.record(audit_log.BLOCK, "Anonymous", "Sending 402 Invoice")
        record_invoice()
        schemes: List[Dict[str, str]] = [scheme.to_dict()]
        return {
            "error": "Payment Required",
            "schemes": schemes,
            "pay_to": scheme.to,
            "currency": scheme.currency,
            "amount": scheme.amount,
            "token": scheme.token,
        }

    async def verify(self, request: VerificationRequest) -> bool:
        mode = request.mode
        try:
            ok = await self._verify(request)
        except Exception as e:
            logger.exception("Payment verification crashed for %s", request.transaction_hash)
            self.audit.record(audit_log.ERROR, "System", f"Verification error: {type(e).__name__}")
            ok = False

        record_verification(mode, "paid" if ok else "denied")
        if ok:
            self.audit.record(audit_log.PAID, "Agent", "Verified")
        else:
            self.audit.record(audit_log.ERROR, "System", "Payment verification failed")
        return ok

    async def _verify(self, request: VerificationRequest) -> bool:
        tx_hash = request.transaction_hash
        if not _TX_HASH_RE.match(tx_hash or ""):
            logger.info("Rejecting malformed transaction hash %r", tx_hash)
            return False

        payer = request.payer_address
        if payer is not None and not Web3.is_address(payer.lower()):
            logger.info("Rejecting malformed payer address %r", payer)
            return False

        if payer:
            self.audit.record(audit_log.VERIFY, "Web", f"Checking {tx_hash[:10]}... from {payer[:10]}...")
        else:
            self.audit.record(audit_log.VERIFY, "CLI", f"Checking {tx_hash[:10]}...")

        receipt = await self.poller.poll(tx_hash)
        if receipt is None:
            logger.info("No receipt for %s; denying", tx_hash)
            return False
        if not receipt.succeeded:
            logger.info("Transaction %s reverted (status=%s)", tx_hash, receipt.status)
            return False

        log = find_qualifying_transfer(
            receipt,
            self.config.token_contract,
            self.config.price_units,
            to=self.config.seller_wallet,
            from_=payer,
        )
        if log is None:
            logger.info("No qualifying Transfer event in %s", tx_hash)
            return False

        logger.info(
            "Payment confirmed: %s %s (%s)",
            format_units(transfer_amount(log), self.config.token_decimals),
            self.config.currency,
            request.mode,
        )
        return True
