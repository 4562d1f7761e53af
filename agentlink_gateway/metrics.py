"""Prometheus metrics for the AgentLink gateway.

Metrics goals:
- low-cardinality labels (never tx hashes, addresses or tickers)
- visibility into invoices, payment verification outcomes, advisor health and
  consensus signals
"""
from __future__ import annotations

import os
import time
from typing import Callable, Optional

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.requests import Request
from starlette.responses import Response


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


# ---------------------------
# Core metric objects
# ---------------------------
HTTP_REQUESTS_TOTAL = Counter(
    "agentlink_http_requests_total",
    "Total HTTP requests received",
    ["method", "route", "status"],
)
HTTP_REQUEST_LATENCY_SECONDS = Histogram(
    "agentlink_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 30, 60),
)
INVOICES_TOTAL = Counter(
    "agentlink_invoices_total",
    "Total 402 payment-required responses issued",
)
PAYMENT_VERIFICATIONS_TOTAL = Counter(
    "agentlink_payment_verifications_total",
    "Total payment verifications",
    ["mode", "outcome"],
)
ADVISOR_CALLS_TOTAL = Counter(
    "agentlink_advisor_calls_total",
    "Total advisor invocations",
    ["round", "outcome"],
)
CONSENSUS_SIGNALS_TOTAL = Counter(
    "agentlink_consensus_signals_total",
    "Final consensus signals produced",
    ["signal"],
)


def record_invoice() -> None:
    INVOICES_TOTAL.inc()


def record_verification(mode: str, outcome: str) -> None:
    PAYMENT_VERIFICATIONS_TOTAL.labels(mode=str(mode), outcome=str(outcome)).inc()


def record_advisor_call(round_number: int, outcome: str) -> None:
    ADVISOR_CALLS_TOTAL.labels(round=str(round_number), outcome=str(outcome)).inc()


def record_consensus(signal: str) -> None:
    CONSENSUS_SIGNALS_TOTAL.labels(signal=str(signal)).inc()


def instrument_fastapi(app, authorize: Optional[Callable] = None) -> None:
    """Attach /metrics endpoint and request middleware to a FastAPI app.

    authorize: callable(request) -> bool. If provided and returns False, /metrics returns 403.
    """
    if not _env_bool("AGENTLINK_METRICS_ENABLED", True):
        return

    @app.middleware("http")
    async def _metrics_middleware(request, call_next):
        start = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or request.url.path
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_path, status=str(status)).inc()
            HTTP_REQUEST_LATENCY_SECONDS.labels(method=request.method, route=route_path).observe(time.time() - start)

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint(request: Request):
        if authorize is not None and not authorize(request):
            # avoid leaking existence details
            return Response(status_code=403, content="FORBIDDEN")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
