"""
AgentLink Gateway Server

FastAPI service that sells market analysis per request over HTTP 402.

Request flow:
- no payment proof   -> 402 invoice describing how to pay
- proof present      -> on-chain verification (receipt + Transfer log)
- verified           -> market data -> two-round advisor deliberation -> 200
- not verified       -> 403

Nothing past the payment gate is fatal: if the advisor panel is unavailable
or fails, the response degrades to a HOLD analysis built from market data.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import audit_log
from .audit_log import AuditBuffer
from .chain import ReceiptPoller, ReceiptSource, Web3ReceiptSource
from .config import GatewayConfig
from .consensus import ConsensusEngine, degraded_analysis
from .errors import AgentLinkError, al_error, AL_E_BAD_REQUEST, AL_E_PAYMENT_INVALID
from .llm import ChatClient, GroqChatClient
from .market import MarketFeed, default_feeds, fetch_market_data
from .metrics import instrument_fastapi, record_consensus
from .panel import AdvisorProfile, load_panel_from_env
from .payment import PaymentGate, VerificationRequest

logger = logging.getLogger("agentlink_gateway")

SERVED_BY = "AgentLink Pro - Multi-Round Deliberative Consensus"
DEFAULT_TOKEN = "CRO"

_TOKEN_RE = re.compile(r"^[A-Z0-9][A-Z0-9._-]{0,19}$")


# ---------------------------
# Response Models
# ---------------------------

class PaymentSchemeModel(BaseModel):
    network: str
    currency: str
    amount: str
    to: str
    token: str


class PaymentRequiredResponse(BaseModel):
    """HTTP 402 body."""
    error: str
    schemes: List[PaymentSchemeModel]
    pay_to: str
    currency: str
    amount: str
    token: str


class MarketStats(BaseModel):
    price: float
    volume: Optional[float] = None
    change: float = 0.0


class VoteModel(BaseModel):
    round: int
    model: str
    perspective: str
    signal: str
    confidence: int
    reason: str
    parsed: bool = True


class ConsensusBlock(BaseModel):
    signal: str
    agreement: str
    confidence: str
    votes: Dict[str, int] = Field(default_factory=dict)
    weighted_scores: Dict[str, int] = Field(default_factory=dict)
    rounds: int
    evolution: Optional[str] = None  # adjusted | consistent; None when degraded
    summary: str


class AnalysesByRound(BaseModel):
    round_1: List[VoteModel] = Field(default_factory=list)
    round_2: List[VoteModel] = Field(default_factory=list)


class AnalyzeResponse(BaseModel):
    success: bool
    token: str
    source: str
    market_stats: MarketStats
    ai_consensus: ConsensusBlock
    analyses_by_round: AnalysesByRound
    served_by: str
    timestamp: str


class AuditEventModel(BaseModel):
    time: str
    type: str
    agent: str
    message: str


# ---------------------------
# Gateway
# ---------------------------

class AgentLinkGateway:
    """
    Request-handling context.

    Owns the audit buffer, the payment gate and the consensus engine. All of
    them are read-only after construction except the audit buffer.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        receipt_source: Optional[ReceiptSource] = None,
        chat_client: Optional[ChatClient] = None,
        panel: Optional[Sequence[AdvisorProfile]] = None,
        feeds: Optional[Sequence[MarketFeed]] = None,
        audit: Optional[AuditBuffer] = None,
        poller: Optional[ReceiptPoller] = None,
    ):
        self.config = config
        if audit is None:
            audit = AuditBuffer(capacity=config.audit_capacity, mirror_path=config.audit_log_path)
        self.audit = audit

        if poller is None:
            source = receipt_source or Web3ReceiptSource(config.rpc_url)
            poller = ReceiptPoller(
                source,
                max_attempts=config.poll_attempts,
                interval_s=config.poll_interval_seconds,
            )
        self.payment_gate = PaymentGate(config, poller, self.audit)

        if chat_client is None and config.groq_api_key:
            chat_client = GroqChatClient(config.groq_api_key, timeout_s=config.llm_timeout_seconds)
        if chat_client is not None:
            self.consensus: Optional[ConsensusEngine] = ConsensusEngine(chat_client, panel or load_panel_from_env())
        else:
            self.consensus = None
            logger.warning("GROQ_API_KEY not configured; analyses will degrade to HOLD")

        self.feeds = tuple(feeds) if feeds is not None else tuple(default_feeds(config.market_timeout_seconds))

    async def analyze(self, token: str) -> Dict[str, Any]:
        """Market data plus panel deliberation for one paid request."""
        self.audit.record(audit_log.DATA, "Market", f"Fetching {token}...")
        market = await fetch_market_data(token, self.feeds)
        self.audit.record(audit_log.DATA, market.source, f"{token} = ${market.price}")

        if self.consensus is None:
            analysis = degraded_analysis(token, market, "Configure GROQ_API_KEY.")
        else:
            try:
                deliberation = await self.consensus.deliberate(token, market)
            except Exception as e:
                logger.error("Consensus failed for %s: %s: %s", token, type(e).__name__, e)
                self.audit.record(audit_log.ERROR, "Consensus", f"Deliberation failed: {type(e).__name__}")
                analysis = degraded_analysis(token, market)
            else:
                analysis = deliberation.to_dict()
                outcome = deliberation.outcome
                record_consensus(outcome.signal.value)
                self.audit.record(
                    audit_log.AI,
                    "Consensus",
                    f"{outcome.signal.value} ({outcome.agreement}% agreement, {outcome.rounds} rounds)",
                )

        return {
            "success": True,
            "token": token,
            "source": market.source,
            "market_stats": {
                "price": market.price,
                "volume": market.volume,
                "change": market.change,
            },
            **analysis,
            "served_by": SERVED_BY,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


# ---------------------------
# FastAPI App Factory
# ---------------------------

def create_app(gateway: Optional[AgentLinkGateway] = None) -> FastAPI:
    """Create FastAPI application with gateway endpoints."""
    from . import __version__ as agentlink_version

    if gateway is None:
        gateway = AgentLinkGateway(GatewayConfig.from_env())

    app = FastAPI(
        title="AgentLink Gateway",
        description="Pay-per-request market analysis with multi-round advisor consensus",
        version=agentlink_version,
    )
    app.state.gateway = gateway

    @app.exception_handler(AgentLinkError)
    async def _agentlink_error_handler(request: Request, exc: AgentLinkError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    # Browser dashboards call the API cross-origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ---------------------------
    # Observability (/metrics)
    # ---------------------------
    metrics_token = (os.getenv("AGENTLINK_METRICS_TOKEN", "") or "").strip()

    def _authorize_metrics(req: Request) -> bool:
        # With a token configured, require Authorization: Bearer <token>
        # or X-Metrics-Token: <token>.
        if not metrics_token:
            return True
        authz = (req.headers.get("Authorization") or "").strip()
        if authz.lower().startswith("bearer ") and authz.split(" ", 1)[1].strip() == metrics_token:
            return True
        return (req.headers.get("X-Metrics-Token") or "").strip() == metrics_token

    instrument_fastapi(app, authorize=_authorize_metrics)

    async def _gated_analysis(token: str, request: Request):
        claim = VerificationRequest.from_headers(request.headers)
        if claim is None:
            return JSONResponse(status_code=402, content=gateway.payment_gate.invoice())

        symbol = (token or DEFAULT_TOKEN).strip().upper()
        if not _TOKEN_RE.match(symbol):
            raise al_error(AL_E_BAD_REQUEST, "Invalid token symbol", token=token)

        if not await gateway.payment_gate.verify(claim):
            raise al_error(AL_E_PAYMENT_INVALID, "Invalid Payment", http_status=403)

        result = await gateway.analyze(symbol)
        return AnalyzeResponse(**result)

    payment_responses = {
        402: {"model": PaymentRequiredResponse, "description": "Payment required"},
        403: {"description": "Payment could not be verified"},
    }

    @app.get("/api/analyze/{token}", response_model=AnalyzeResponse, responses=payment_responses)
    async def analyze_token(token: str, request: Request):
        """Paid analysis for `token` (ticker symbol, case-insensitive)."""
        return await _gated_analysis(token, request)

    @app.get("/api/analyze", response_model=AnalyzeResponse, responses=payment_responses)
    async def analyze_default(request: Request):
        return await _gated_analysis(DEFAULT_TOKEN, request)

    @app.get("/logs", response_model=List[AuditEventModel])
    async def logs():
        """Most recent audit events, newest first."""
        return gateway.audit.snapshot()

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": agentlink_version,
            "consensus_configured": gateway.consensus is not None,
            "advisors": len(gateway.consensus.panel) if gateway.consensus else 0,
            "price_units": str(gateway.config.price_units),
            "currency": gateway.config.currency,
        }

    return app


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def main():
    """
    Main entry point for the agentlink-gateway CLI.

    Usage:
        agentlink-gateway                    # Start on default port 3000
        agentlink-gateway --port 9000        # Start on custom port
        agentlink-gateway --host 127.0.0.1   # Bind to localhost only
    """
    import argparse

    parser = argparse.ArgumentParser(
        description="AgentLink Gateway - pay-per-request consensus analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    SELLER_WALLET              Address that receives payments (required)
    GROQ_API_KEY               Enables the advisor panel
    AGENTLINK_RPC_URL          JSON-RPC endpoint for receipt lookups
    AGENTLINK_TOKEN_CONTRACT   Stablecoin contract address
    AGENTLINK_PRICE_UNITS      Price per analysis in minor units
    AGENTLINK_AUDIT_LOG_PATH   Optional JSONL mirror of audit events
        """,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=3000, help="Port to bind (default: 3000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    setup_logging(args.verbose)

    import uvicorn

    # Fail fast on bad configuration before binding the port.
    config = GatewayConfig.from_env()
    print(f"Starting AgentLink Gateway on {args.host}:{args.port}")
    print(f"  Seller:  {config.seller_wallet[:6]}...{config.seller_wallet[-4:]}")
    print(f"  Price:   {config.price_units} minor units of {config.currency} ({config.network})")
    print(f"  Panel:   {'enabled' if config.groq_api_key else 'disabled (GROQ_API_KEY not set)'}")
    print(f"  Endpoints:")
    print(f"    GET /api/analyze/{{token}} - Paid analysis (HTTP 402)")
    print(f"    GET /logs                - Recent audit events")
    print(f"    GET /health              - Health check")
    print()

    uvicorn.run(
        "agentlink_gateway.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


# CLI entry point
if __name__ == "__main__":
    import sys
    sys.exit(main() or 0)
