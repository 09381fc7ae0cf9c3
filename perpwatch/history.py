"""
History Store: per-instrument rolling window of snapshots.

Each instrument gets a deque ordered by fetch time.  A snapshot normally
lands on the right; one that finished late (an on-demand build racing the
poll loop) is slotted in behind any newer entries.  append() then pops from
the left every snapshot older than the window, measured from the newest
entry.  Reads never prune and never fetch.
"""

import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from .snapshot import Snapshot

logger = logging.getLogger(__name__)

# 24 hours
DEFAULT_WINDOW_MS = 24 * 60 * 60 * 1000


class HistoryStore:
    """
    Bounded time-window buffer of snapshots per instrument.

    Writers (the poll loop and on-demand builds) and any number of
    readers; all access goes through a re-entrant lock.
    """

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS):
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self.window_ms = window_ms
        self._lock = threading.RLock()
        self._buffers: Dict[str, Deque[Snapshot]] = {}

    def append(self, symbol: str, snapshot: Snapshot) -> int:
        """Insert a snapshot in fetch-time order and prune the head. Returns the number pruned."""
        symbol = symbol.upper()
        pruned = 0
        with self._lock:
            buf = self._buffers.setdefault(symbol, deque())
            i = len(buf)
            while i and buf[i - 1].fetched_at > snapshot.fetched_at:
                i -= 1
            buf.insert(i, snapshot)
            cutoff = buf[-1].fetched_at - self.window_ms
            while buf and buf[0].fetched_at < cutoff:
                buf.popleft()
                pruned += 1
        if pruned:
            logger.debug("History %s: pruned %d, kept %d", symbol, pruned, len(buf))
        return pruned

    def read(self, symbol: str) -> List[Snapshot]:
        """Retained snapshots oldest first; empty for an unknown instrument."""
        with self._lock:
            buf = self._buffers.get(symbol.upper())
            return list(buf) if buf else []

    def latest(self, symbol: str) -> Optional[Snapshot]:
        with self._lock:
            buf = self._buffers.get(symbol.upper())
            return buf[-1] if buf else None

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._buffers)

    def size(self, symbol: str) -> int:
        with self._lock:
            buf = self._buffers.get(symbol.upper())
            return len(buf) if buf else 0

    def stats(self) -> Dict[str, Dict[str, int]]:
        """Per-instrument count and time range, for the health endpoint."""
        with self._lock:
            return {
                sym: {
                    "count": len(buf),
                    "oldest": buf[0].fetched_at if buf else 0,
                    "newest": buf[-1].fetched_at if buf else 0,
                }
                for sym, buf in sorted(self._buffers.items())
            }

    def reset(self) -> None:
        with self._lock:
            self._buffers.clear()
