"""
Rule-based directional signal.

score() folds an ordered tuple of rules over a DerivedMetrics bundle.  Each
rule is a pure function returning the points it contributes and a reason
line, or None when it does not fire.  Rules never look at the running score,
so order only affects the order of the reasons.

Rules (in order):
  1. 15m price move     >= +3%: +2      <= -3%: -2
  2. 4h OI change       >= +5%: +2 if price is up, else +1
                        <= -5%: +1 only if price is up (short covering)
  3. funding sign flip  vs. previous period: +1 either direction
  4. funding crowding   > 3 x 0.05%: -1 (crowded longs)
                        < 3 x -0.05%: +1 (crowded shorts)
  5. net order flow     reason only, 0 points

Classification: score >= 3 BUY, score <= -2 SELL, otherwise NEUTRAL.  The
bands are deliberately asymmetric, as is the falling-OI rule.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import DEFAULT_THRESHOLDS, SignalThresholds
from .deltas import DerivedMetrics


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class RuleOutcome:
    points: int
    reason: str


@dataclass(frozen=True)
class SignalResult:
    signal: Signal
    score: int
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal": self.signal.value,
            "score": self.score,
            "reasons": list(self.reasons),
        }


Rule = Callable[[DerivedMetrics, SignalThresholds], Optional[RuleOutcome]]


def price_momentum_rule(m: DerivedMetrics, t: SignalThresholds) -> Optional[RuleOutcome]:
    change = m.price_change_15m
    if change is None:
        return None
    if change >= t.price_move_pct:
        return RuleOutcome(2, f"Price {change:+.2f}% in 15m")
    if change <= -t.price_move_pct:
        return RuleOutcome(-2, f"Price {change:+.2f}% in 15m")
    return None


def open_interest_rule(m: DerivedMetrics, t: SignalThresholds) -> Optional[RuleOutcome]:
    oi_change = m.oi_change_4h
    if oi_change is None:
        return None
    price_change = m.price_change_15m
    price_up = price_change is not None and price_change > 0

    if oi_change >= t.oi_move_pct:
        if price_up:
            return RuleOutcome(2, f"OI {oi_change:+.2f}% in 4h with price rising")
        return RuleOutcome(1, f"OI {oi_change:+.2f}% in 4h")
    if oi_change <= -t.oi_move_pct and price_up:
        return RuleOutcome(1, f"OI {oi_change:+.2f}% in 4h with price rising (short covering)")
    return None


def funding_flip_rule(m: DerivedMetrics, t: SignalThresholds) -> Optional[RuleOutcome]:
    if m.funding_now is None or m.funding_prev is None:
        return None
    if m.funding_now * m.funding_prev < 0:
        return RuleOutcome(
            1,
            f"Funding flipped {m.funding_prev * 100:+.4f}% -> {m.funding_now * 100:+.4f}%",
        )
    return None


def funding_crowding_rule(m: DerivedMetrics, t: SignalThresholds) -> Optional[RuleOutcome]:
    rate = m.funding_now
    if rate is None:
        return None
    if rate > t.funding_crowd_multiplier * t.funding_long_crowd:
        return RuleOutcome(-1, f"Funding {rate * 100:+.4f}%: crowded longs")
    if rate < t.funding_crowd_multiplier * t.funding_short_crowd:
        return RuleOutcome(1, f"Funding {rate * 100:+.4f}%: crowded shorts")
    return None


def order_flow_rule(m: DerivedMetrics, t: SignalThresholds) -> Optional[RuleOutcome]:
    flow = m.net_flow
    if flow is None:
        return None
    if flow > 0:
        return RuleOutcome(0, f"Net taker flow {flow:+,.2f} (buy-dominant)")
    if flow < 0:
        return RuleOutcome(0, f"Net taker flow {flow:+,.2f} (sell-dominant)")
    return RuleOutcome(0, "Net taker flow balanced")


RULES: Tuple[Rule, ...] = (
    price_momentum_rule,
    open_interest_rule,
    funding_flip_rule,
    funding_crowding_rule,
    order_flow_rule,
)


def classify(total: int, thresholds: SignalThresholds = DEFAULT_THRESHOLDS) -> Signal:
    if total >= thresholds.buy_score:
        return Signal.BUY
    if total <= thresholds.sell_score:
        return Signal.SELL
    return Signal.NEUTRAL


def evaluate(
    metrics: DerivedMetrics,
    thresholds: SignalThresholds = DEFAULT_THRESHOLDS,
    rules: Tuple[Rule, ...] = RULES,
) -> List[RuleOutcome]:
    """Outcomes of the rules that fired, in rule order."""
    outcomes = []
    for rule in rules:
        outcome = rule(metrics, thresholds)
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes


def score(
    metrics: DerivedMetrics,
    thresholds: SignalThresholds = DEFAULT_THRESHOLDS,
    rules: Tuple[Rule, ...] = RULES,
) -> SignalResult:
    outcomes = evaluate(metrics, thresholds, rules)
    total = sum(o.points for o in outcomes)
    return SignalResult(
        signal=classify(total, thresholds),
        score=total,
        reasons=tuple(o.reason for o in outcomes),
    )
