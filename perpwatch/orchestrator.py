"""
Snapshot Orchestrator: builds one snapshot per instrument and drives polling.

Per instrument:
    resolve venues -> fetch spot + futures metrics concurrently
    -> derive deltas -> score -> assemble -> append to history

Futures metrics come from the linear venue when listed, otherwise from the
inverse contract if one exists.  Spot metrics are skipped when the instrument
is not spot-listed.  Anything that escapes the pipeline becomes a degraded
snapshot; build_snapshot() never raises.

Instruments are polled one after another; the fan-out happens inside a
single instrument.  There is no retry: a failed fetch shows up as a null
field and is tried again on the next tick or the next cache miss.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from .config import DEFAULT_THRESHOLDS, ConfigurationError, SignalThresholds, parse_symbols
from .deltas import derive_metrics, now_ms
from .fetchers import RawMetrics, fetch_futures_metrics, fetch_spot_metrics
from .history import HistoryStore
from .signal_engine import score
from .snapshot import Snapshot
from .transport import INVERSE, LINEAR, TransportError
from .venues import VenueMembership, VenueRegistry

logger = logging.getLogger(__name__)

# Default poll interval (seconds)
DEFAULT_POLL_INTERVAL = 60.0


@dataclass
class PollCycle:
    """Completion record for one poll tick, handed to cycle listeners."""
    cycle: int
    started_at: int
    finished_at: int
    snapshots: List[Snapshot] = field(default_factory=list)

    @property
    def failed_symbols(self) -> List[str]:
        return [s.symbol for s in self.snapshots if s.degraded]


def describe_error(exc: BaseException) -> str:
    """Error descriptor stored on a degraded snapshot."""
    if isinstance(exc, TransportError):
        return f"HTTP {exc.status}: {exc.message}"
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    return str(exc) or type(exc).__name__


class SnapshotOrchestrator:
    """
    Composes the venue registry, fetchers, delta calculator, signal engine
    and history store for a set of tracked instruments.

    Usage:
        orchestrator = SnapshotOrchestrator(transport, ["BTCUSDT", "ETHUSDT"])
        orchestrator.add_cycle_listener(lambda cycle: print(cycle.cycle))
        await orchestrator.poll_once()
        orchestrator.get_history("BTCUSDT")
    """

    def __init__(
        self,
        transport: Any,
        symbols: Iterable[str],
        registry: Optional[VenueRegistry] = None,
        history: Optional[HistoryStore] = None,
        thresholds: SignalThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], int] = now_ms,
        max_age_ms: Optional[int] = None,
    ):
        self.transport = transport
        self.symbols = parse_symbols(",".join(symbols))
        if not self.symbols:
            raise ConfigurationError("No instruments to track")
        self.registry = registry if registry is not None else VenueRegistry()
        self.history = history if history is not None else HistoryStore()
        self.thresholds = thresholds
        self._clock = clock
        # Cached snapshots older than this are rebuilt on read; None serves any age
        self.max_age_ms = max_age_ms

        self.cycle = 0
        self.last_cycle: Optional[PollCycle] = None
        self.running = False
        self._listeners: List[Callable[[PollCycle], None]] = []

    # ------------------------------------------------------------------
    # Single instrument
    # ------------------------------------------------------------------

    async def _fetch_raw(self, symbol: str, venues: VenueMembership) -> RawMetrics:
        futures_venue = contract = None
        if venues.linear_futures:
            futures_venue, contract = LINEAR, symbol
        elif venues.inverse_contract is not None:
            futures_venue, contract = INVERSE, venues.inverse_contract

        calls = []
        if venues.spot:
            # Spot candles are only needed when no futures venue supplies price history
            calls.append(fetch_spot_metrics(self.transport, symbol, with_candles=futures_venue is None))
        if futures_venue is not None:
            calls.append(fetch_futures_metrics(self.transport, futures_venue, contract))

        results = await asyncio.gather(*calls)

        raw = RawMetrics()
        it = iter(results)
        if venues.spot:
            raw.spot = next(it)
        if futures_venue is not None:
            raw.futures = next(it)
        return raw

    async def build_snapshot(self, symbol: str) -> Snapshot:
        """Assemble, record and return a fresh snapshot. Never raises."""
        symbol = symbol.upper()
        fetched_at = self._clock()
        try:
            venues = await self.registry.resolve(symbol, self.transport)
            raw = await self._fetch_raw(symbol, venues)
            deltas = derive_metrics(raw, fetched_at)
            result = score(deltas, self.thresholds)
            snapshot = Snapshot.assemble(symbol, fetched_at, venues, raw, deltas, result)
        except Exception as e:
            logger.error("Snapshot %s failed: %s", symbol, e, exc_info=True)
            snapshot = Snapshot.failed(symbol, fetched_at, describe_error(e))

        self.history.append(symbol, snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_now(self, symbols: Optional[Iterable[str]] = None) -> List[Snapshot]:
        """
        Latest snapshot per instrument, building on demand for cache misses.

        With max_age_ms set, a cached snapshot older than that is rebuilt too,
        so instruments outside the poll loop do not serve their first
        snapshot forever.

        Raises:
            ConfigurationError: the instrument list is empty.
        """
        wanted = self.symbols if symbols is None else parse_symbols(",".join(symbols))
        if not wanted:
            raise ConfigurationError("No instruments requested")

        out = []
        for symbol in wanted:
            snapshot = self.history.latest(symbol)
            if snapshot is None or self._is_stale(snapshot):
                snapshot = await self.build_snapshot(symbol)
            out.append(snapshot)
        return out

    def _is_stale(self, snapshot: Snapshot) -> bool:
        if self.max_age_ms is None:
            return False
        return self._clock() - snapshot.fetched_at > self.max_age_ms

    def get_history(self, symbol: str) -> List[Snapshot]:
        return self.history.read(symbol)

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def add_cycle_listener(self, listener: Callable[[PollCycle], None]) -> None:
        self._listeners.append(listener)

    def remove_cycle_listener(self, listener: Callable[[PollCycle], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def poll_once(self) -> List[Snapshot]:
        """One sequential pass over every tracked instrument."""
        started_at = self._clock()
        snapshots = []
        for symbol in self.symbols:
            snapshots.append(await self.build_snapshot(symbol))

        self.cycle += 1
        record = PollCycle(
            cycle=self.cycle,
            started_at=started_at,
            finished_at=self._clock(),
            snapshots=snapshots,
        )
        self.last_cycle = record

        failed = record.failed_symbols
        logger.info(
            "Poll cycle %d: %d snapshots, %d degraded%s",
            record.cycle, len(snapshots), len(failed),
            f" ({', '.join(failed)})" if failed else "",
        )

        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.warning("Cycle listener error: %s", e)

        return snapshots

    async def run(self, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        """Poll immediately, then every `interval` seconds until stop()."""
        self.running = True
        logger.info("Polling %s every %.0fs", ", ".join(self.symbols), interval)
        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning("Poll loop error: %s", e)
            if not self.running:
                break
            await asyncio.sleep(interval)

    def stop(self) -> None:
        """Signal the poll loop to stop after the current cycle."""
        self.running = False
