"""
Snapshot: the per-instrument record produced each poll cycle.

A snapshot with `error` set is a degraded but valid record: it keeps the
instrument and fetch time so callers can tell "failed at T" from "never
fetched".
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .deltas import DerivedMetrics
from .fetchers import (
    FUNDING_HISTORY_LEN,
    LIQUIDATION_TAIL_LEN,
    OI_HISTORY_LEN,
    FundingPoint,
    Liquidation,
    OpenInterestPoint,
    RawMetrics,
    to_dicts,
)
from .signal_engine import SignalResult
from .venues import VenueMembership

_SNAKE_PART = re.compile(r"_([a-z0-9])")


def camel_case(name: str) -> str:
    """price_change_15m -> priceChange15m"""
    return _SNAKE_PART.sub(lambda m: m.group(1).upper(), name)


def camel_keys(value: Any) -> Any:
    """Recursively rename dict keys to camelCase for the JSON shape."""
    if isinstance(value, dict):
        return {camel_case(k): camel_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camel_keys(v) for v in value]
    return value


@dataclass
class SpotAggregates:
    volume: Optional[float] = None
    last_price: Optional[float] = None
    quote_volume: Optional[float] = None
    taker_buy_volume: Optional[float] = None


@dataclass
class Snapshot:
    symbol: str
    fetched_at: int                      # epoch ms
    price: Optional[float] = None
    funding_rate: Optional[float] = None
    next_funding_time: Optional[int] = None
    open_interest: Optional[float] = None
    mark_price: Optional[float] = None
    futures_venue: Optional[str] = None  # "linear" / "inverse"
    contract: Optional[str] = None
    spot: Optional[SpotAggregates] = None
    deltas: Optional[DerivedMetrics] = None
    funding_history: List[FundingPoint] = field(default_factory=list)
    open_interest_history: List[OpenInterestPoint] = field(default_factory=list)
    liquidations: List[Liquidation] = field(default_factory=list)
    signal: Optional[SignalResult] = None
    venues: Optional[VenueMembership] = None
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None

    @classmethod
    def failed(cls, symbol: str, fetched_at: int, error: str) -> "Snapshot":
        """Degraded record carrying only the instrument, time and error."""
        return cls(symbol=symbol, fetched_at=fetched_at, error=error)

    @classmethod
    def assemble(
        cls,
        symbol: str,
        fetched_at: int,
        venues: VenueMembership,
        raw: RawMetrics,
        deltas: DerivedMetrics,
        signal: SignalResult,
    ) -> "Snapshot":
        snap = cls(
            symbol=symbol,
            fetched_at=fetched_at,
            price=deltas.price_now,
            deltas=deltas,
            signal=signal,
            venues=venues,
        )

        if raw.spot is not None:
            ticker = raw.spot.ticker
            snap.spot = SpotAggregates(
                volume=ticker.volume if ticker else None,
                last_price=ticker.last_price if ticker else None,
                quote_volume=ticker.quote_volume if ticker else None,
                taker_buy_volume=raw.spot.taker_buy_volume,
            )

        futures = raw.futures
        if futures is not None:
            snap.futures_venue = futures.venue
            snap.contract = futures.contract
            snap.open_interest = futures.open_interest
            if futures.premium is not None:
                snap.funding_rate = futures.premium.funding_rate
                snap.next_funding_time = futures.premium.next_funding_time
                snap.mark_price = futures.premium.mark_price
            snap.funding_history = list(futures.funding_history[-FUNDING_HISTORY_LEN:])
            snap.open_interest_history = list(futures.open_interest_history[-OI_HISTORY_LEN:])
            snap.liquidations = list(futures.liquidations[-LIQUIDATION_TAIL_LEN:])

        return snap

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready shape used by the API, camelCase at every level."""
        return camel_keys({
            "symbol": self.symbol,
            "fetchedAt": self.fetched_at,
            "price": self.price,
            "fundingRate": self.funding_rate,
            "nextFundingTime": self.next_funding_time,
            "openInterest": self.open_interest,
            "markPrice": self.mark_price,
            "futuresVenue": self.futures_venue,
            "contract": self.contract,
            "spot": vars(self.spot).copy() if self.spot else None,
            "deltas": self.deltas.to_dict() if self.deltas else None,
            "fundingHistory": to_dicts(self.funding_history),
            "openInterestHistory": to_dicts(self.open_interest_history),
            "liquidations": to_dicts(self.liquidations),
            "signal": self.signal.to_dict() if self.signal else None,
            "venues": self.venues.to_dict() if self.venues else None,
            "error": self.error,
        })
