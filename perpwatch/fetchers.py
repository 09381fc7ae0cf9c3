"""
Per-venue metric fetchers.

Every fetcher issues one request through the transport and returns a
normalized value, or None / [] if anything goes wrong (timeout, network
error, non-200, unexpected payload).  Failures are logged and swallowed here
so one missing metric never takes down the rest of the snapshot.

Venue schema differences handled here:
  - inverse ticker/price and premiumIndex return lists, linear return dicts
  - inverse klines report volume in contracts; base-asset volume sits in
    columns 7 (volume) and 10 (taker buy)
  - inverse openInterestHist is keyed by pair + contractType, not symbol
  - inverse open interest stays in contracts for both the current value and
    the history, so the 4h delta compares like with like

All volumes are base-asset units.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .transport import SPOT, LINEAR, INVERSE

logger = logging.getLogger(__name__)

# History tail lengths kept on the snapshot
FUNDING_HISTORY_LEN = 6
OI_HISTORY_LEN = 6
LIQUIDATION_TAIL_LEN = 10

# Candle series used for the price lookbacks
CANDLE_LIMIT = 6
OI_HISTORY_PERIOD = "4h"

# Spot taker-buy volume is summed over the last 24 hourly klines
TAKER_BUY_INTERVAL = "1h"
TAKER_BUY_LIMIT = 24


# ---------------------------------------------------------------------------
# Normalized structures
# ---------------------------------------------------------------------------

@dataclass
class Candle:
    """One OHLC bucket, volumes in base asset."""
    open_time: int
    close_time: int
    close: float
    volume: float = 0.0
    taker_buy_volume: float = 0.0


@dataclass
class Spot24h:
    """Rolling 24h spot aggregates."""
    volume: Optional[float]
    last_price: Optional[float]
    quote_volume: Optional[float]


@dataclass
class PremiumIndex:
    funding_rate: Optional[float]
    next_funding_time: Optional[int]
    mark_price: Optional[float]


@dataclass
class FundingPoint:
    time: int
    rate: float


@dataclass
class OpenInterestPoint:
    time: int
    value: float


@dataclass
class Liquidation:
    """A forced-liquidation order. side is the order side, position the side liquidated."""
    time: int
    side: str
    position: str
    price: float
    qty: float


@dataclass
class SpotMetrics:
    ticker: Optional[Spot24h] = None
    taker_buy_volume: Optional[float] = None
    candles_15m: List[Candle] = field(default_factory=list)
    candles_4h: List[Candle] = field(default_factory=list)


@dataclass
class FuturesMetrics:
    venue: str
    contract: str
    price: Optional[float] = None
    candles_15m: List[Candle] = field(default_factory=list)
    candles_4h: List[Candle] = field(default_factory=list)
    premium: Optional[PremiumIndex] = None
    funding_history: List[FundingPoint] = field(default_factory=list)
    open_interest: Optional[float] = None
    open_interest_history: List[OpenInterestPoint] = field(default_factory=list)
    liquidations: List[Liquidation] = field(default_factory=list)


@dataclass
class RawMetrics:
    """Everything fetched for one instrument in one cycle. Any part may be missing."""
    spot: Optional[SpotMetrics] = None
    futures: Optional[FuturesMetrics] = None

    @property
    def candles_15m(self) -> List[Candle]:
        if self.futures is not None and self.futures.candles_15m:
            return self.futures.candles_15m
        return self.spot.candles_15m if self.spot is not None else []

    @property
    def candles_4h(self) -> List[Candle]:
        if self.futures is not None and self.futures.candles_4h:
            return self.futures.candles_4h
        return self.spot.candles_4h if self.spot is not None else []


def to_dicts(items: List[Any]) -> List[Dict[str, Any]]:
    return [asdict(item) for item in items]


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def to_float(value: Any) -> Optional[float]:
    """float(value), or None for missing, non-numeric, NaN or infinite input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def to_int(value: Any) -> Optional[int]:
    result = to_float(value)
    return int(result) if result is not None else None


def _first(payload: Any) -> Any:
    """Inverse endpoints wrap single results in a list."""
    if isinstance(payload, list):
        return payload[0] if payload else None
    return payload


def _inverse_pair(contract: str) -> str:
    """Contract symbol to pair, e.g. BTCUSD_PERP -> BTCUSD."""
    return contract.split("_")[0]


def parse_klines(payload: Any, venue: str) -> List[Candle]:
    """Normalize a klines array into Candles, skipping malformed rows."""
    if not isinstance(payload, list):
        return []
    # Inverse klines: col 5 / 9 are contracts, col 7 / 10 base asset
    volume_col, taker_col = (7, 10) if venue == INVERSE else (5, 9)
    candles: List[Candle] = []
    for row in payload:
        if not isinstance(row, (list, tuple)) or len(row) <= taker_col:
            continue
        open_time = to_int(row[0])
        close_time = to_int(row[6])
        close = to_float(row[4])
        if open_time is None or close_time is None or close is None:
            continue
        candles.append(Candle(
            open_time=open_time,
            close_time=close_time,
            close=close,
            volume=to_float(row[volume_col]) or 0.0,
            taker_buy_volume=to_float(row[taker_col]) or 0.0,
        ))
    candles.sort(key=lambda c: c.close_time)
    return candles


# ---------------------------------------------------------------------------
# Individual fetchers
# ---------------------------------------------------------------------------

async def fetch_spot_24h(transport: Any, symbol: str) -> Optional[Spot24h]:
    """GET /api/v3/ticker/24hr -> volume (base), lastPrice, quoteVolume."""
    try:
        data = await transport.get(SPOT, "ticker_24h", {"symbol": symbol})
        if not isinstance(data, dict):
            logger.warning("Spot 24h %s: unexpected payload", symbol)
            return None
        return Spot24h(
            volume=to_float(data.get("volume")),
            last_price=to_float(data.get("lastPrice")),
            quote_volume=to_float(data.get("quoteVolume")),
        )
    except Exception as e:
        logger.warning("Spot 24h %s: %s", symbol, e)
        return None


async def fetch_spot_taker_buy(transport: Any, symbol: str) -> Optional[float]:
    """Sum of taker-buy base volume over the last 24 hourly spot klines."""
    try:
        data = await transport.get(SPOT, "klines", {
            "symbol": symbol,
            "interval": TAKER_BUY_INTERVAL,
            "limit": TAKER_BUY_LIMIT,
        })
        candles = parse_klines(data, SPOT)
        if not candles:
            logger.warning("Spot taker buy %s: no klines", symbol)
            return None
        return sum(c.taker_buy_volume for c in candles)
    except Exception as e:
        logger.warning("Spot taker buy %s: %s", symbol, e)
        return None


async def fetch_candles(transport: Any, venue: str, symbol: str, interval: str) -> List[Candle]:
    try:
        data = await transport.get(venue, "klines", {
            "symbol": symbol,
            "interval": interval,
            "limit": CANDLE_LIMIT,
        })
        return parse_klines(data, venue)
    except Exception as e:
        logger.warning("Klines %s %s %s: %s", venue, symbol, interval, e)
        return []


async def fetch_price(transport: Any, venue: str, symbol: str) -> Optional[float]:
    """Last trade price from the futures ticker."""
    try:
        data = _first(await transport.get(venue, "price", {"symbol": symbol}))
        if not isinstance(data, dict):
            return None
        return to_float(data.get("price"))
    except Exception as e:
        logger.warning("Price %s %s: %s", venue, symbol, e)
        return None


async def fetch_premium_index(transport: Any, venue: str, symbol: str) -> Optional[PremiumIndex]:
    """Current funding rate, next funding time and mark price."""
    try:
        data = _first(await transport.get(venue, "premium_index", {"symbol": symbol}))
        if not isinstance(data, dict):
            return None
        return PremiumIndex(
            funding_rate=to_float(data.get("lastFundingRate")),
            next_funding_time=to_int(data.get("nextFundingTime")),
            mark_price=to_float(data.get("markPrice")),
        )
    except Exception as e:
        logger.warning("Premium index %s %s: %s", venue, symbol, e)
        return None


async def fetch_funding_history(transport: Any, venue: str, symbol: str) -> List[FundingPoint]:
    try:
        data = await transport.get(venue, "funding_history", {
            "symbol": symbol,
            "limit": FUNDING_HISTORY_LEN,
        })
        if not isinstance(data, list):
            return []
        points = []
        for item in data:
            if not isinstance(item, dict):
                continue
            t = to_int(item.get("fundingTime"))
            rate = to_float(item.get("fundingRate"))
            if t is not None and rate is not None:
                points.append(FundingPoint(time=t, rate=rate))
        points.sort(key=lambda p: p.time)
        return points[-FUNDING_HISTORY_LEN:]
    except Exception as e:
        logger.warning("Funding history %s %s: %s", venue, symbol, e)
        return []


async def fetch_open_interest(transport: Any, venue: str, symbol: str) -> Optional[float]:
    try:
        data = _first(await transport.get(venue, "open_interest", {"symbol": symbol}))
        if not isinstance(data, dict):
            return None
        return to_float(data.get("openInterest"))
    except Exception as e:
        logger.warning("Open interest %s %s: %s", venue, symbol, e)
        return None


async def fetch_open_interest_history(transport: Any, venue: str, symbol: str) -> List[OpenInterestPoint]:
    """4h-bucketed open interest, oldest first."""
    params: Dict[str, Any] = {"period": OI_HISTORY_PERIOD, "limit": OI_HISTORY_LEN}
    if venue == INVERSE:
        params.update(pair=_inverse_pair(symbol), contractType="PERPETUAL")
    else:
        params["symbol"] = symbol
    try:
        data = await transport.get(venue, "open_interest_history", params)
        if not isinstance(data, list):
            return []
        points = []
        for item in data:
            if not isinstance(item, dict):
                continue
            t = to_int(item.get("timestamp"))
            value = to_float(item.get("sumOpenInterest"))
            if t is not None and value is not None:
                points.append(OpenInterestPoint(time=t, value=value))
        points.sort(key=lambda p: p.time)
        return points[-OI_HISTORY_LEN:]
    except Exception as e:
        logger.warning("Open interest history %s %s: %s", venue, symbol, e)
        return []


async def fetch_liquidations(transport: Any, venue: str, symbol: str) -> List[Liquidation]:
    """Recent forced liquidations, newest last."""
    try:
        data = await transport.get(venue, "liquidations", {
            "symbol": symbol,
            "limit": LIQUIDATION_TAIL_LEN,
        })
        if not isinstance(data, list):
            return []
        events = []
        for item in data:
            if not isinstance(item, dict):
                continue
            t = to_int(item.get("time"))
            side = str(item.get("side", "")).upper()
            price = to_float(item.get("averagePrice")) or to_float(item.get("price"))
            qty = to_float(item.get("executedQty")) or to_float(item.get("origQty"))
            if t is None or price is None or qty is None:
                continue
            # SELL = longs liquidated, BUY = shorts liquidated
            position = "long" if side == "SELL" else "short"
            events.append(Liquidation(time=t, side=side, position=position, price=price, qty=qty))
        events.sort(key=lambda e: e.time)
        return events[-LIQUIDATION_TAIL_LEN:]
    except Exception as e:
        logger.warning("Liquidations %s %s: %s", venue, symbol, e)
        return []


# ---------------------------------------------------------------------------
# Per-venue fan-out
# ---------------------------------------------------------------------------

def _settled(name: str, symbol: str, result: Any, empty: Any) -> Any:
    """Unwrap a gather() result, turning a stray exception into the empty value."""
    if isinstance(result, BaseException):
        logger.warning("%s %s: exception %s", name, symbol, result)
        return empty
    return result


async def fetch_spot_metrics(transport: Any, symbol: str, with_candles: bool = False) -> SpotMetrics:
    """Spot aggregates, plus spot candles when no futures venue supplies them."""
    calls = [
        fetch_spot_24h(transport, symbol),
        fetch_spot_taker_buy(transport, symbol),
    ]
    if with_candles:
        calls.append(fetch_candles(transport, SPOT, symbol, "15m"))
        calls.append(fetch_candles(transport, SPOT, symbol, "4h"))

    results = await asyncio.gather(*calls, return_exceptions=True)

    metrics = SpotMetrics(
        ticker=_settled("spot_24h", symbol, results[0], None),
        taker_buy_volume=_settled("spot_taker_buy", symbol, results[1], None),
    )
    if with_candles:
        metrics.candles_15m = _settled("spot_candles_15m", symbol, results[2], [])
        metrics.candles_4h = _settled("spot_candles_4h", symbol, results[3], [])
    return metrics


async def fetch_futures_metrics(transport: Any, venue: str, contract: str) -> FuturesMetrics:
    """All futures metrics for one contract, fetched concurrently."""
    if venue not in (LINEAR, INVERSE):
        raise ValueError(f"{venue!r} is not a futures venue")

    results = await asyncio.gather(
        fetch_price(transport, venue, contract),
        fetch_candles(transport, venue, contract, "15m"),
        fetch_candles(transport, venue, contract, "4h"),
        fetch_premium_index(transport, venue, contract),
        fetch_funding_history(transport, venue, contract),
        fetch_open_interest(transport, venue, contract),
        fetch_open_interest_history(transport, venue, contract),
        fetch_liquidations(transport, venue, contract),
        return_exceptions=True,
    )

    return FuturesMetrics(
        venue=venue,
        contract=contract,
        price=_settled("price", contract, results[0], None),
        candles_15m=_settled("candles_15m", contract, results[1], []),
        candles_4h=_settled("candles_4h", contract, results[2], []),
        premium=_settled("premium_index", contract, results[3], None),
        funding_history=_settled("funding_history", contract, results[4], []),
        open_interest=_settled("open_interest", contract, results[5], None),
        open_interest_history=_settled("open_interest_history", contract, results[6], []),
        liquidations=_settled("liquidations", contract, results[7], []),
    )
