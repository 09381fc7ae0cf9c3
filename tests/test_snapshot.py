"""Tests for the snapshot JSON shape."""

import pytest

from perpwatch.deltas import DerivedMetrics
from perpwatch.fetchers import FundingPoint, Liquidation
from perpwatch.snapshot import Snapshot, SpotAggregates, camel_case, camel_keys
from perpwatch.venues import VenueMembership

from fakes import NOW


class TestCamelCase:

    @pytest.mark.parametrize("raw,expected", [
        ("symbol", "symbol"),
        ("fetched_at", "fetchedAt"),
        ("price_change_15m", "priceChange15m"),
        ("oi_change_4h", "oiChange4h"),
        ("taker_buy_volume", "takerBuyVolume"),
        ("fetchedAt", "fetchedAt"),
    ])
    def test_camel_case(self, raw, expected):
        assert camel_case(raw) == expected

    def test_nested_keys_only(self):
        data = {"outer_key": [{"inner_key": "keep_this_value"}], "reasons": ["a_b"]}
        assert camel_keys(data) == {"outerKey": [{"innerKey": "keep_this_value"}], "reasons": ["a_b"]}


class TestToDict:

    def test_every_level_is_camel_case(self):
        snap = Snapshot(
            symbol="XUSDT",
            fetched_at=NOW,
            spot=SpotAggregates(volume=1.0, last_price=2.0, quote_volume=2.0, taker_buy_volume=0.5),
            deltas=DerivedMetrics(price_now=104.0, price_15m_ago=100.0, funding_now=0.001, funding_prev=-0.001),
            funding_history=[FundingPoint(time=NOW, rate=0.001)],
            liquidations=[Liquidation(time=NOW, side="SELL", position="long", price=1.0, qty=2.0)],
            venues=VenueMembership(spot=True, linear_futures=True, inverse_contract="XUSD_PERP"),
        )

        def keys(obj):
            if isinstance(obj, dict):
                for k, v in obj.items():
                    yield k
                    yield from keys(v)
            elif isinstance(obj, list):
                for v in obj:
                    yield from keys(v)

        body = snap.to_dict()
        assert all("_" not in k for k in keys(body))
        assert body["spot"]["takerBuyVolume"] == 0.5
        assert body["deltas"]["price15mAgo"] == 100.0
        assert body["deltas"]["priceChange15m"] == pytest.approx(4.0)
        assert body["venues"]["inverseContract"] == "XUSD_PERP"
        assert body["fundingHistory"] == [{"time": NOW, "rate": 0.001}]

    def test_degraded(self):
        body = Snapshot.failed("XUSDT", NOW, "timeout").to_dict()
        assert body["error"] == "timeout"
        assert body["deltas"] is None
        assert body["fundingHistory"] == []
