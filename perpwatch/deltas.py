"""
Delta calculator: aligns candle, funding and OI series into lookback deltas.

Price lookbacks pick the close of the latest candle that finished at least
`lookback` ago.  That is an approximation rather than interpolation, which
is fine because candle granularity matches the lookback (15m candles for the
15m delta, 4h candles for the 4h delta).
"""

import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Sequence

from .fetchers import Candle, RawMetrics

LOOKBACK_15M_MS = 15 * 60 * 1000
LOOKBACK_4H_MS = 4 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def last_close(series: Sequence[Candle]) -> Optional[float]:
    """Close of the last candle, None for an empty series."""
    if not series:
        return None
    return series[-1].close


def close_at_or_before(
    series: Sequence[Candle],
    lookback_ms: int,
    now: Optional[int] = None,
) -> Optional[float]:
    """
    Close of the most recent candle with close_time <= now - lookback_ms.

    Falls back to the first candle's close when no candle is old enough,
    and returns None for an empty series.
    """
    if not series:
        return None
    if now is None:
        now = now_ms()
    cutoff = now - lookback_ms

    picked: Optional[Candle] = None
    for candle in series:
        if candle.close_time <= cutoff:
            picked = candle
    if picked is None:
        picked = series[0]
    return picked.close


def percent_change(from_value: Optional[float], to_value: Optional[float]) -> Optional[float]:
    """(to - from) / from * 100, or None if either side is unknown or from is zero."""
    if from_value is None or to_value is None or from_value == 0:
        return None
    return (to_value - from_value) / from_value * 100


def net_order_flow(
    total_volume: Optional[float],
    taker_buy_volume: Optional[float],
) -> Optional[float]:
    """
    Taker-buy volume minus synthesized taker-sell volume.

    Taker-sell is total - taker_buy floored at zero.  Positive means
    buy-dominant flow, negative sell-dominant.
    """
    if total_volume is None or taker_buy_volume is None:
        return None
    taker_sell = max(total_volume - taker_buy_volume, 0.0)
    return taker_buy_volume - taker_sell


@dataclass(frozen=True)
class DerivedMetrics:
    """Endpoints of every comparison the signal engine looks at."""
    price_now: Optional[float] = None
    price_15m_ago: Optional[float] = None
    price_4h_ago: Optional[float] = None
    funding_now: Optional[float] = None
    funding_prev: Optional[float] = None
    oi_now: Optional[float] = None
    oi_4h_ago: Optional[float] = None
    net_flow: Optional[float] = None

    @property
    def price_change_15m(self) -> Optional[float]:
        return percent_change(self.price_15m_ago, self.price_now)

    @property
    def price_change_4h(self) -> Optional[float]:
        return percent_change(self.price_4h_ago, self.price_now)

    @property
    def oi_change_4h(self) -> Optional[float]:
        return percent_change(self.oi_4h_ago, self.oi_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            price_change_15m=self.price_change_15m,
            price_change_4h=self.price_change_4h,
            oi_change_4h=self.oi_change_4h,
        )
        return data


def derive_metrics(raw: RawMetrics, now: Optional[int] = None) -> DerivedMetrics:
    """Build the derived bundle from whatever raw metrics arrived this cycle."""
    if now is None:
        now = now_ms()

    spot = raw.spot
    futures = raw.futures
    candles_15m = raw.candles_15m
    candles_4h = raw.candles_4h

    # Futures last trade, then latest candle, then spot ticker
    price_now = futures.price if futures is not None else None
    if price_now is None:
        price_now = last_close(candles_15m)
    if price_now is None and spot is not None and spot.ticker is not None:
        price_now = spot.ticker.last_price

    funding_now = funding_prev = None
    oi_now = oi_4h_ago = None
    if futures is not None:
        if futures.premium is not None:
            funding_now = futures.premium.funding_rate
        # One-period lag: second-to-last settled rate
        if len(futures.funding_history) >= 2:
            funding_prev = futures.funding_history[-2].rate
        oi_now = futures.open_interest
        if len(futures.open_interest_history) >= 2:
            oi_4h_ago = futures.open_interest_history[-2].value

    net_flow = None
    if spot is not None and spot.ticker is not None:
        net_flow = net_order_flow(spot.ticker.volume, spot.taker_buy_volume)

    return DerivedMetrics(
        price_now=price_now,
        price_15m_ago=close_at_or_before(candles_15m, LOOKBACK_15M_MS, now),
        price_4h_ago=close_at_or_before(candles_4h, LOOKBACK_4H_MS, now),
        funding_now=funding_now,
        funding_prev=funding_prev,
        oi_now=oi_now,
        oi_4h_ago=oi_4h_ago,
        net_flow=net_flow,
    )
