"""
Binance REST transport for the three venues.

One aiohttp session, three endpoint families:
  - spot:    https://api.binance.com   /api/v3/...
  - linear:  https://fapi.binance.com  /fapi/v1/...  (USDT-margined perpetuals)
  - inverse: https://dapi.binance.com  /dapi/v1/...  (coin-margined perpetuals)

Callers address endpoints by venue + logical name ("klines", "premium_index",
...) so the venue schemas stay in one table.  Non-200 responses raise
TransportError; aiohttp.ClientError and asyncio.TimeoutError pass through.
No retries: a failed call is simply tried again on the next poll.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

SPOT = "spot"
LINEAR = "linear"
INVERSE = "inverse"

VENUES = (SPOT, LINEAR, INVERSE)

# HTTP timeout per request (seconds)
HTTP_TIMEOUT = 8.0


@dataclass(frozen=True)
class VenueEndpoints:
    """Base URL and endpoint paths for one venue."""
    base_url: str
    paths: Dict[str, str]


ENDPOINTS: Dict[str, VenueEndpoints] = {
    SPOT: VenueEndpoints(
        base_url="https://api.binance.com",
        paths={
            "instrument": "/api/v3/exchangeInfo",
            "ticker_24h": "/api/v3/ticker/24hr",
            "klines": "/api/v3/klines",
        },
    ),
    LINEAR: VenueEndpoints(
        base_url="https://fapi.binance.com",
        paths={
            # /fapi/v1/exchangeInfo ignores the symbol filter, the ticker
            # rejects unknown symbols with HTTP 400
            "instrument": "/fapi/v1/ticker/price",
            "price": "/fapi/v1/ticker/price",
            "klines": "/fapi/v1/klines",
            "premium_index": "/fapi/v1/premiumIndex",
            "funding_history": "/fapi/v1/fundingRate",
            "open_interest": "/fapi/v1/openInterest",
            "open_interest_history": "/futures/data/openInterestHist",
            "liquidations": "/fapi/v1/allForceOrders",
        },
    ),
    INVERSE: VenueEndpoints(
        base_url="https://dapi.binance.com",
        paths={
            "catalog": "/dapi/v1/exchangeInfo",
            "price": "/dapi/v1/ticker/price",
            "klines": "/dapi/v1/klines",
            "premium_index": "/dapi/v1/premiumIndex",
            "funding_history": "/dapi/v1/fundingRate",
            "open_interest": "/dapi/v1/openInterest",
            "open_interest_history": "/futures/data/openInterestHist",
            "liquidations": "/dapi/v1/allForceOrders",
        },
    ),
}


class TransportError(Exception):
    """Non-success response from the market-data API."""

    def __init__(self, status: int, message: str, url: str = ""):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message
        self.url = url


class BinanceTransport:
    """
    Async market-data transport over a shared aiohttp session.

    Usage:
        async with BinanceTransport(timeout=8) as transport:
            data = await transport.get("linear", "premium_index", {"symbol": "BTCUSDT"})
    """

    def __init__(
        self,
        timeout: float = HTTP_TIMEOUT,
        endpoints: Optional[Dict[str, VenueEndpoints]] = None,
    ):
        self.timeout = timeout
        self.endpoints = endpoints or ENDPOINTS
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BinanceTransport":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def url_for(self, venue: str, endpoint: str) -> str:
        try:
            family = self.endpoints[venue]
        except KeyError:
            raise ValueError(f"Unknown venue {venue!r}")
        try:
            path = family.paths[endpoint]
        except KeyError:
            raise ValueError(f"Venue {venue!r} has no {endpoint!r} endpoint")
        return f"{family.base_url}{path}"

    async def get(
        self,
        venue: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET one endpoint and return the decoded JSON body.

        Raises:
            TransportError: non-200 response
            aiohttp.ClientError / asyncio.TimeoutError: network failure
        """
        url = self.url_for(venue, endpoint)
        if self._session is None:
            await self.start()

        async with self._session.get(url, params=params) as resp:
            if resp.status != 200:
                body = await resp.text()
                if resp.status in (418, 429):
                    logger.warning("Rate limited (%d): %s", resp.status, url)
                raise TransportError(resp.status, body[:200], url)
            return await resp.json()


async def probe(transport: Any, venue: str, endpoint: str, params: Dict[str, Any]) -> bool:
    """Return True if the endpoint answers successfully, False on any failure."""
    try:
        await transport.get(venue, endpoint, params)
        return True
    except (TransportError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug("probe %s %s %s failed: %s", venue, endpoint, params, e)
        return False
    except Exception as e:
        logger.warning("probe %s %s %s: unexpected %s", venue, endpoint, params, e)
        return False
