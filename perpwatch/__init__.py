"""
perpwatch: multi-venue snapshot aggregation and signal engine.

Polls spot, linear and inverse perpetual venues for a set of instruments,
builds per-instrument snapshots (price, funding, open interest, order flow),
keeps a rolling 24h history and scores a BUY/SELL/NEUTRAL signal.
"""

__version__ = "1.0.0"
