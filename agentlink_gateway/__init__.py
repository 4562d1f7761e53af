"""AgentLink Gateway package.

This package sells market analysis per request behind an HTTP 402 payment
gate:

- On-chain verification of stablecoin Transfer events (facilitator or direct mode)
- Fixed-interval receipt polling against a JSON-RPC node
- Two-round deliberation across a panel of language-model advisors
- Confidence-weighted consensus over round-2 votes
- Bounded audit trail and Prometheus metrics

Convenience imports
------------------
The package avoids heavy import-time side effects. For convenience, these are
available as top-level imports:

    from agentlink_gateway import AgentLinkGateway, create_app

Core building blocks are also re-exported:

    from agentlink_gateway import PaymentGate, ConsensusEngine, GatewayConfig

All of the above are loaded lazily.
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments.

    The project version is a simple `version = "..."` field in
    `pyproject.toml`, so a regex parse is enough.
    """

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
        m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
        return m.group(1) if m else None
    except Exception:
        return None


# Prefer repo-local pyproject version (tests), otherwise fall back to a
# hardcoded default.
__version__ = (
    _read_version_from_pyproject()
    or "1.0.0"
)

__all__ = [
    "__version__",
    "AgentLinkGateway",
    "create_app",
    "PaymentGate",
    "ConsensusEngine",
    "GatewayConfig",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "AgentLinkGateway": ("agentlink_gateway.server", "AgentLinkGateway"),
    "create_app": ("agentlink_gateway.server", "create_app"),
    "PaymentGate": ("agentlink_gateway.payment", "PaymentGate"),
    "ConsensusEngine": ("agentlink_gateway.consensus", "ConsensusEngine"),
    "GatewayConfig": ("agentlink_gateway.config", "GatewayConfig"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'agentlink_gateway' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
