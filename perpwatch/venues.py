"""
Venue Registry: which venues list an instrument.

Membership is probed once per instrument and cached for the process
lifetime.  A failed probe is cached as "not listed"; nothing is re-validated,
so an instrument listed after startup needs a restart to be picked up.

The inverse-futures side is a single catalog shared by all instruments
(base asset -> coin-margined perpetual symbol), built lazily from the full
inverse exchangeInfo.  If that fetch fails the catalog stays empty and the
next resolve() that finds it empty tries again.
"""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from .transport import SPOT, LINEAR, INVERSE, probe

logger = logging.getLogger(__name__)

# Quote suffixes stripped to get the base asset ("BTCUSDT" -> "BTC").
_QUOTE_SUFFIXES = ("USDT", "BUSD", "USDC", "USD")


@dataclass(frozen=True)
class VenueMembership:
    """Per-instrument venue listing flags."""
    spot: bool = False
    linear_futures: bool = False
    inverse_contract: Optional[str] = None

    @property
    def any_futures(self) -> bool:
        return self.linear_futures or self.inverse_contract is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def base_asset(symbol: str) -> Optional[str]:
    """
    Strip the quote-currency suffix from an instrument.

    Returns None if nothing is left after stripping ("USDT" alone).
    """
    symbol = symbol.strip().upper()
    for suffix in _QUOTE_SUFFIXES:
        if symbol.endswith(suffix):
            base = symbol[: -len(suffix)]
            return base or None
    return symbol or None


def parse_inverse_catalog(payload: Any) -> Dict[str, str]:
    """Map base asset -> contract symbol for trading perpetuals in a dapi exchangeInfo."""
    catalog: Dict[str, str] = {}
    if not isinstance(payload, dict):
        return catalog
    for item in payload.get("symbols") or []:
        if not isinstance(item, dict):
            continue
        if item.get("contractType") != "PERPETUAL":
            continue
        status = item.get("contractStatus")
        if status is not None and status != "TRADING":
            continue
        base = item.get("baseAsset")
        contract = item.get("symbol")
        if base and contract:
            catalog.setdefault(str(base).upper(), str(contract))
    return catalog


class VenueRegistry:
    """
    Process-lifetime cache of venue membership.

    Reads and writes go through a lock so the API thread can look up
    memberships while the poll loop resolves new instruments.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._memberships: Dict[str, VenueMembership] = {}
        self._inverse_catalog: Dict[str, str] = {}
        self._inverse_loaded = False

    def get(self, symbol: str) -> Optional[VenueMembership]:
        """Cached membership, or None if the instrument was never resolved."""
        with self._lock:
            return self._memberships.get(symbol.upper())

    def reset(self) -> None:
        """Drop every cached fact, including the inverse catalog."""
        with self._lock:
            self._memberships.clear()
            self._inverse_catalog = {}
            self._inverse_loaded = False

    @property
    def inverse_loaded(self) -> bool:
        with self._lock:
            return self._inverse_loaded

    async def _ensure_inverse_catalog(self, transport: Any) -> None:
        with self._lock:
            if self._inverse_loaded:
                return

        try:
            payload = await transport.get(INVERSE, "catalog")
        except Exception as e:
            logger.warning("Inverse contract catalog unavailable: %s", e)
            return

        catalog = parse_inverse_catalog(payload)
        with self._lock:
            self._inverse_catalog = catalog
            # An empty catalog is treated like a failed fetch
            self._inverse_loaded = bool(catalog)
        logger.info("Inverse contract catalog loaded: %d perpetuals", len(catalog))

    async def inverse_contract(self, symbol: str, transport: Any) -> Optional[str]:
        await self._ensure_inverse_catalog(transport)
        base = base_asset(symbol)
        if base is None:
            return None
        with self._lock:
            return self._inverse_catalog.get(base)

    async def resolve(self, symbol: str, transport: Any) -> VenueMembership:
        """Venue membership for an instrument, probing the venues on first sight."""
        symbol = symbol.upper()
        cached = self.get(symbol)
        if cached is not None:
            return cached

        spot = await probe(transport, SPOT, "instrument", {"symbol": symbol})
        linear = await probe(transport, LINEAR, "instrument", {"symbol": symbol})
        inverse = await self.inverse_contract(symbol, transport)

        membership = VenueMembership(spot=spot, linear_futures=linear, inverse_contract=inverse)
        with self._lock:
            # First writer wins, the cache is never overwritten
            membership = self._memberships.setdefault(symbol, membership)

        logger.info(
            "Venues %s: spot=%s linear=%s inverse=%s",
            symbol, membership.spot, membership.linear_futures, membership.inverse_contract,
        )
        return membership
