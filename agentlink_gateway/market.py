"""Market data feeds.

Feeds are tried in order; the first one that returns data wins:

1. Crypto.com Exchange public ticker (`{TOKEN}_USDT`)
2. CoinGecko simple price
3. Simulated data, so an analysis can still be served when both APIs are down

A feed returns None on any HTTP, network or shape problem. HTTP uses only the
standard library (urllib); calls run in a worker thread.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import random
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .errors import al_error, AL_E_MARKET_UNAVAILABLE

logger = logging.getLogger(__name__)

USER_AGENT = "AgentLink/1.0"

CRYPTO_COM_TICKER_URL = "https://api.crypto.com/v2/public/get-ticker"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

COINGECKO_IDS: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "CRO": "crypto-com-chain",
    "PEPE": "pepe",
    "SOL": "solana",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "MATIC": "matic-network",
}


@dataclass(frozen=True)
class MarketData:
    source: str
    price: float
    volume: Optional[float] = None
    change: float = 0.0
    high: Optional[float] = None
    low: Optional[float] = None

    @property
    def trend(self) -> str:
        return "up" if self.change >= 0 else "down"

    def headline(self, token: str) -> str:
        return f"{self.source}: {token} at ${self.price}, {self.trend} {abs(self.change):.2f}%"


def _get_json(url: str, params: Dict[str, Any], timeout_s: float) -> Any:
    full_url = f"{url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(full_url, headers={"User-Agent": USER_AGENT, "Accept": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise al_error(AL_E_MARKET_UNAVAILABLE, f"HTTP {e.code}", retryable=True, http_status=502, url=url) from e
    except Exception as e:
        raise al_error(AL_E_MARKET_UNAVAILABLE, f"{type(e).__name__}: {e}", retryable=True, http_status=502, url=url) from e


class MarketFeed(abc.ABC):
    name: str = "feed"

    @abc.abstractmethod
    def fetch(self, token: str) -> Optional[MarketData]:
        raise NotImplementedError


class CryptoComFeed(MarketFeed):
    name = "Crypto.com Exchange API"

    def __init__(self, base_url: str = CRYPTO_COM_TICKER_URL, timeout_s: float = 5.0):
        self.base_url = base_url
        self.timeout_s = float(timeout_s)

    def fetch(self, token: str) -> Optional[MarketData]:
        try:
            body = _get_json(self.base_url, {"instrument_name": f"{token}_USDT"}, self.timeout_s)
            rows = ((body or {}).get("result") or {}).get("data") or []
            if not rows:
                return None
            row = rows[0]
            return MarketData(
                source=self.name,
                price=float(row["a"]),
                high=float(row["h"]) if row.get("h") is not None else None,
                low=float(row["l"]) if row.get("l") is not None else None,
                volume=float(row["v"]) if row.get("v") is not None else None,
                change=float(row.get("c") or 0),
            )
        except Exception as e:
            logger.warning("Crypto.com feed failed for %s: %s", token, e)
            return None


class CoinGeckoFeed(MarketFeed):
    name = "CoinGecko API"

    def __init__(self, base_url: str = COINGECKO_PRICE_URL, timeout_s: float = 5.0):
        self.base_url = base_url
        self.timeout_s = float(timeout_s)

    def fetch(self, token: str) -> Optional[MarketData]:
        coin_id = COINGECKO_IDS.get(token, token.lower())
        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
        }
        try:
            body = _get_json(self.base_url, params, self.timeout_s)
            d = (body or {}).get(coin_id)
            if not d or d.get("usd") is None:
                return None
            return MarketData(
                source=self.name,
                price=float(d["usd"]),
                volume=float(d.get("usd_24h_vol") or 0),
                change=float(d.get("usd_24h_change") or 0),
            )
        except Exception as e:
            logger.warning("CoinGecko feed failed for %s: %s", token, e)
            return None


class SimulatedFeed(MarketFeed):
    """Last-resort synthetic data. Never fails."""

    name = "Simulation"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def fetch(self, token: str) -> Optional[MarketData]:
        return MarketData(
            source=self.name,
            price=round(self.rng.uniform(10000, 60000), 2),
            volume=float(self.rng.randint(0, 10_000_000)),
            change=round(self.rng.uniform(-10, 10), 2),
        )


def default_feeds(timeout_s: float = 5.0) -> Sequence[MarketFeed]:
    return (CryptoComFeed(timeout_s=timeout_s), CoinGeckoFeed(timeout_s=timeout_s), SimulatedFeed())


async def fetch_market_data(token: str, feeds: Sequence[MarketFeed]) -> MarketData:
    """Return data from the first feed that has it."""
    for feed in feeds:
        data = await asyncio.to_thread(feed.fetch, token)
        if data is not None:
            return data
    raise al_error(AL_E_MARKET_UNAVAILABLE, "no market data available", retryable=True, http_status=503, token=token)
