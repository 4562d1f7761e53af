"""Environment-driven configuration for the AgentLink gateway.

Environment variables:
- SELLER_WALLET: recipient address for payments (required).
- AGENTLINK_RPC_URL: JSON-RPC endpoint used for receipt lookups.
- AGENTLINK_TOKEN_CONTRACT: stablecoin contract the payment must come from.
- AGENTLINK_PRICE_UNITS: price per analysis, in the token's smallest unit.
- AGENTLINK_TOKEN_DECIMALS: token decimals (display only).
- AGENTLINK_NETWORK / AGENTLINK_CURRENCY: labels advertised in the invoice.
- AGENTLINK_POLL_ATTEMPTS / AGENTLINK_POLL_INTERVAL_SECONDS: receipt polling bound.
- GROQ_API_KEY: enables the advisor panel.
- AGENTLINK_LLM_TIMEOUT_SECONDS: per-call timeout for the chat API.
- AGENTLINK_AUDIT_CAPACITY: number of audit events kept in memory.
- AGENTLINK_AUDIT_LOG_PATH: optional JSONL mirror of audit events.
- AGENTLINK_MARKET_TIMEOUT_SECONDS: price-feed HTTP timeout.

Numeric values that fail to parse, or parse out of range, fall back to their
defaults. A missing or malformed seller wallet or token contract is a hard
configuration error.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from .errors import al_error, AL_E_CONFIG_INVALID


DEFAULT_RPC_URL = "https://evm-t3.cronos.org"
DEFAULT_TOKEN_CONTRACT = "0xc01efAaF7C5C61bEbFAeb358E1161b537b8bC0e0"  # devUSDC, Cronos testnet
DEFAULT_PRICE_UNITS = 10000  # 0.01 USDC


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)).strip())
    except Exception:
        return default
    return value if value >= minimum else default


def _get_float(name: str, default: float, minimum: float = 0.0) -> float:
    try:
        value = float(os.getenv(name, str(default)).strip())
    except Exception:
        return default
    return value if value >= minimum else default


def _require_address(name: str, raw: Optional[str]) -> str:
    value = (raw or "").strip()
    if not value:
        raise al_error(AL_E_CONFIG_INVALID, f"{name} is not configured", http_status=500, variable=name)
    # Checksum casing is not enforced; addresses are compared lowercase.
    if not Web3.is_address(value.lower()):
        raise al_error(AL_E_CONFIG_INVALID, f"{name} is not a valid address", http_status=500, variable=name)
    return value.lower()


@dataclass(frozen=True)
class GatewayConfig:
    """Process-wide, read-only gateway configuration."""

    seller_wallet: str
    rpc_url: str = DEFAULT_RPC_URL
    token_contract: str = DEFAULT_TOKEN_CONTRACT.lower()
    price_units: int = DEFAULT_PRICE_UNITS
    token_decimals: int = 6
    network: str = "cronos-testnet"
    currency: str = "USDC"
    poll_attempts: int = 5
    poll_interval_seconds: float = 2.0
    groq_api_key: Optional[str] = None
    llm_timeout_seconds: float = 30.0
    audit_capacity: int = 50
    audit_log_path: Optional[str] = None
    market_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        seller = _require_address("SELLER_WALLET", os.getenv("SELLER_WALLET"))
        token = _require_address(
            "AGENTLINK_TOKEN_CONTRACT",
            os.getenv("AGENTLINK_TOKEN_CONTRACT", DEFAULT_TOKEN_CONTRACT),
        )

        return cls(
            seller_wallet=seller,
            rpc_url=(os.getenv("AGENTLINK_RPC_URL", "") or "").strip() or DEFAULT_RPC_URL,
            token_contract=token,
            price_units=_get_int("AGENTLINK_PRICE_UNITS", DEFAULT_PRICE_UNITS, minimum=1),
            token_decimals=_get_int("AGENTLINK_TOKEN_DECIMALS", 6),
            network=(os.getenv("AGENTLINK_NETWORK", "") or "").strip() or "cronos-testnet",
            currency=(os.getenv("AGENTLINK_CURRENCY", "") or "").strip() or "USDC",
            poll_attempts=_get_int("AGENTLINK_POLL_ATTEMPTS", 5, minimum=1),
            poll_interval_seconds=_get_float("AGENTLINK_POLL_INTERVAL_SECONDS", 2.0),
            groq_api_key=(os.getenv("GROQ_API_KEY", "") or "").strip() or None,
            llm_timeout_seconds=_get_float("AGENTLINK_LLM_TIMEOUT_SECONDS", 30.0, minimum=0.1),
            audit_capacity=_get_int("AGENTLINK_AUDIT_CAPACITY", 50, minimum=1),
            audit_log_path=(os.getenv("AGENTLINK_AUDIT_LOG_PATH", "") or "").strip() or None,
            market_timeout_seconds=_get_float("AGENTLINK_MARKET_TIMEOUT_SECONDS", 5.0, minimum=0.1),
        )
