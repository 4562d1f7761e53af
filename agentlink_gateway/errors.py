"""Stable error taxonomy for the AgentLink gateway.

This module defines machine-readable error codes and a single exception type
used across the payment gate, the consensus engine and the HTTP layer.

Design goals:
- Stable `code` string suitable for programmatic handling.
- Optional `retryable` flag and `http_status` for transport layers.
- Structured `details` for debugging without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Configuration
AL_E_CONFIG_INVALID = "AL_E_CONFIG_INVALID"

# Payment gate
AL_E_PAYMENT_INVALID = "AL_E_PAYMENT_INVALID"

# External collaborators
AL_E_RPC_UNAVAILABLE = "AL_E_RPC_UNAVAILABLE"
AL_E_LLM_UNAVAILABLE = "AL_E_LLM_UNAVAILABLE"
AL_E_MARKET_UNAVAILABLE = "AL_E_MARKET_UNAVAILABLE"

# Generic
AL_E_BAD_REQUEST = "AL_E_BAD_REQUEST"


@dataclass
class AgentLinkError(Exception):
    """Base exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        # `error` carries the human message so clients can match on it directly.
        d: Dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "retryable": bool(self.retryable),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def al_error(
    code: str,
    message: str,
    *,
    retryable: bool = False,
    http_status: int = 400,
    **details: Any,
) -> AgentLinkError:
    return AgentLinkError(code=code, message=message, retryable=retryable, http_status=http_status, details=details)
