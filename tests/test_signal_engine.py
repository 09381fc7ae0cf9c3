"""Tests for the rule-based signal engine."""

import itertools

import pytest

from perpwatch.config import SignalThresholds
from perpwatch.deltas import DerivedMetrics
from perpwatch.signal_engine import (
    RULES,
    Signal,
    classify,
    evaluate,
    funding_crowding_rule,
    funding_flip_rule,
    open_interest_rule,
    order_flow_rule,
    price_momentum_rule,
    score,
)

T = SignalThresholds()


def metrics(price_change=None, oi_change=None, **kw):
    """DerivedMetrics with the given 15m price / 4h OI percentage changes."""
    if price_change is not None:
        kw.setdefault("price_15m_ago", 100.0)
        kw.setdefault("price_now", 100.0 + price_change)
    if oi_change is not None:
        kw.setdefault("oi_4h_ago", 1000.0)
        kw.setdefault("oi_now", 1000.0 + oi_change * 10)
    return DerivedMetrics(**kw)


class TestPriceMomentum:

    def test_exactly_three_percent_fires(self):
        out = price_momentum_rule(metrics(price_change=3.0), T)
        assert out.points == 2

    def test_just_below_threshold(self):
        assert price_momentum_rule(metrics(price_change=2.999), T) is None

    def test_down_move(self):
        assert price_momentum_rule(metrics(price_change=-3.0), T).points == -2

    def test_unknown_price(self):
        assert price_momentum_rule(DerivedMetrics(price_now=100.0), T) is None

    def test_threshold_is_configurable(self):
        t = SignalThresholds(price_move_pct=1.0)
        assert price_momentum_rule(metrics(price_change=1.5), t).points == 2


class TestOpenInterest:

    def test_rising_oi_with_rising_price(self):
        assert open_interest_rule(metrics(price_change=1.0, oi_change=6.0), T).points == 2

    def test_rising_oi_with_falling_price(self):
        assert open_interest_rule(metrics(price_change=-1.0, oi_change=6.0), T).points == 1

    def test_rising_oi_with_unknown_price(self):
        assert open_interest_rule(metrics(oi_change=6.0), T).points == 1

    def test_falling_oi_with_rising_price_is_short_covering(self):
        out = open_interest_rule(metrics(price_change=1.0, oi_change=-6.0), T)
        assert out.points == 1
        assert "short covering" in out.reason

    @pytest.mark.parametrize("price_change", [-1.0, 0.0, None])
    def test_falling_oi_without_rising_price_contributes_nothing(self, price_change):
        assert open_interest_rule(metrics(price_change=price_change, oi_change=-6.0), T) is None

    def test_small_oi_move(self):
        assert open_interest_rule(metrics(price_change=5.0, oi_change=4.0), T) is None


class TestFunding:

    def test_flip_positive_to_negative(self):
        assert funding_flip_rule(DerivedMetrics(funding_prev=0.0002, funding_now=-0.0001), T).points == 1

    def test_flip_negative_to_positive(self):
        assert funding_flip_rule(DerivedMetrics(funding_prev=-0.0002, funding_now=0.0001), T).points == 1

    @pytest.mark.parametrize("prev,now", [(0.0001, 0.0002), (0.0, 0.0001), (0.0001, None), (None, 0.0001)])
    def test_no_flip(self, prev, now):
        assert funding_flip_rule(DerivedMetrics(funding_prev=prev, funding_now=now), T) is None

    def test_crowded_longs(self):
        out = funding_crowding_rule(DerivedMetrics(funding_now=0.002), T)
        assert out.points == -1
        assert "crowded longs" in out.reason

    def test_crowded_shorts(self):
        out = funding_crowding_rule(DerivedMetrics(funding_now=-0.002), T)
        assert out.points == 1
        assert "crowded shorts" in out.reason

    def test_crowding_is_strictly_beyond_three_times(self):
        assert funding_crowding_rule(DerivedMetrics(funding_now=0.0015), T) is None
        assert funding_crowding_rule(DerivedMetrics(funding_now=-0.0015), T) is None


class TestOrderFlow:

    @pytest.mark.parametrize("flow,word", [(5.0, "buy-dominant"), (-5.0, "sell-dominant"), (0.0, "balanced")])
    def test_reason_only(self, flow, word):
        out = order_flow_rule(DerivedMetrics(net_flow=flow), T)
        assert out.points == 0
        assert word in out.reason

    def test_absent(self):
        assert order_flow_rule(DerivedMetrics(), T) is None


class TestScore:

    def test_end_to_end_buy(self):
        m = DerivedMetrics(
            price_15m_ago=100.0, price_now=104.0,
            oi_4h_ago=1000.0, oi_now=1060.0,
            funding_prev=0.0002, funding_now=-0.0001,
        )
        result = score(m)
        assert result.score == 5
        assert result.signal is Signal.BUY
        assert len(result.reasons) == 3
        assert result.reasons[0].startswith("Price")
        assert result.reasons[1].startswith("OI")
        assert result.reasons[2].startswith("Funding flipped")

    def test_empty_bundle_is_neutral(self):
        result = score(DerivedMetrics())
        assert result.signal is Signal.NEUTRAL
        assert result.score == 0
        assert result.reasons == ()

    def test_sell(self):
        result = score(metrics(price_change=-4.0))
        assert result.score == -2
        assert result.signal is Signal.SELL

    def test_deterministic(self):
        m = metrics(price_change=3.5, oi_change=-7.0, funding_now=0.003, funding_prev=-0.001, net_flow=12.0)
        assert score(m) == score(m)
        assert score(m).to_dict() == score(m).to_dict()

    def test_rule_order_only_affects_reason_order(self):
        m = metrics(price_change=3.5, oi_change=6.0, funding_now=-0.002, funding_prev=0.001, net_flow=-3.0)
        baseline = score(m)
        for perm in itertools.permutations(RULES):
            result = score(m, rules=perm)
            assert result.score == baseline.score
            assert sorted(result.reasons) == sorted(baseline.reasons)

    def test_evaluate_keeps_rule_order(self):
        m = metrics(price_change=3.5, net_flow=1.0)
        reasons = [o.reason for o in evaluate(m)]
        assert reasons[0].startswith("Price")
        assert reasons[-1].startswith("Net taker flow")


class TestClassify:
    """Asymmetric bands: BUY needs +3, SELL only -2."""

    @pytest.mark.parametrize("total,expected", [
        (3, Signal.BUY), (7, Signal.BUY),
        (2, Signal.NEUTRAL), (0, Signal.NEUTRAL), (-1, Signal.NEUTRAL),
        (-2, Signal.SELL), (-5, Signal.SELL),
    ])
    def test_bands(self, total, expected):
        assert classify(total) is expected
