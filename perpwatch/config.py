"""
Process configuration and signal thresholds.

Values come from environment variables with module-level defaults.

    SYMBOLS=BTCUSDT,ETHUSDT POLL_INTERVAL=30 PORT=8080 python run_server.py
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional


# Default tracked instruments
DEFAULT_SYMBOLS = "ALICEUSDT,LUMIAUSDT"

# Seconds between poll ticks
DEFAULT_POLL_INTERVAL = 60.0

# API listen address
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 10000

# HTTP timeout per request (seconds)
DEFAULT_HTTP_TIMEOUT = 8.0

# History retention window
DEFAULT_HISTORY_HOURS = 24.0

# =============================================================================
# Signal thresholds
# =============================================================================
# Price and OI thresholds are percentages, funding thresholds are raw rates
# per 8h funding period (0.0005 == 0.05%/8h). The crowding checks fire at
# FUNDING_CROWD_MULTIPLIER times these values.
# =============================================================================

PRICE_MOVE_PCT = 3.0
OI_MOVE_PCT = 5.0
FUNDING_LONG_CROWD = 0.0005
FUNDING_SHORT_CROWD = -0.0005
FUNDING_CROWD_MULTIPLIER = 3.0

# Score bands for the final classification
BUY_SCORE = 3
SELL_SCORE = -2


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class SignalThresholds:
    """Thresholds for the rule-based signal engine. Fixed for a run."""
    price_move_pct: float = PRICE_MOVE_PCT
    oi_move_pct: float = OI_MOVE_PCT
    funding_long_crowd: float = FUNDING_LONG_CROWD
    funding_short_crowd: float = FUNDING_SHORT_CROWD
    funding_crowd_multiplier: float = FUNDING_CROWD_MULTIPLIER
    buy_score: int = BUY_SCORE
    sell_score: int = SELL_SCORE


DEFAULT_THRESHOLDS = SignalThresholds()


@dataclass
class Settings:
    """Runtime settings for the poller and API server."""
    symbols: List[str]
    poll_interval: float = DEFAULT_POLL_INTERVAL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    history_hours: float = DEFAULT_HISTORY_HOURS
    thresholds: SignalThresholds = field(default_factory=SignalThresholds)

    @property
    def history_window_ms(self) -> int:
        return int(self.history_hours * 3600 * 1000)


def parse_symbols(raw: Optional[str]) -> List[str]:
    """Split a comma-separated list, upper-case, drop blanks and duplicates."""
    if not raw:
        return []
    seen: Dict[str, None] = {}
    for part in raw.split(","):
        sym = part.strip().upper()
        if sym:
            seen.setdefault(sym, None)
    return list(seen)


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Raises:
        ConfigurationError: no symbols configured, or a malformed number.
    """
    if environ is None:
        environ = os.environ

    symbols = parse_symbols(environ.get("SYMBOLS", DEFAULT_SYMBOLS))
    if not symbols:
        raise ConfigurationError("SYMBOLS is empty, at least one instrument is required")

    poll_interval = _env_float(environ, "POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
    if poll_interval <= 0:
        raise ConfigurationError(f"POLL_INTERVAL must be positive, got {poll_interval}")

    thresholds = SignalThresholds(
        price_move_pct=_env_float(environ, "PRICE_MOVE_PCT", PRICE_MOVE_PCT),
        oi_move_pct=_env_float(environ, "OI_MOVE_PCT", OI_MOVE_PCT),
        funding_long_crowd=_env_float(environ, "FUNDING_LONG_CROWD", FUNDING_LONG_CROWD),
        funding_short_crowd=_env_float(environ, "FUNDING_SHORT_CROWD", FUNDING_SHORT_CROWD),
    )

    return Settings(
        symbols=symbols,
        poll_interval=poll_interval,
        host=environ.get("HOST", DEFAULT_HOST),
        port=_env_int(environ, "PORT", DEFAULT_PORT),
        http_timeout=_env_float(environ, "HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        history_hours=_env_float(environ, "HISTORY_HOURS", DEFAULT_HISTORY_HOURS),
        thresholds=thresholds,
    )
