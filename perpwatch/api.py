"""
HTTP surface over the snapshot orchestrator.

Endpoints:
    GET /                         liveness text
    GET /health                   poll cycle + history stats
    GET /api/now?symbols=A,B      latest snapshot per instrument (builds on miss)
    GET /api/history?symbol=A     retained snapshot window, oldest first

The poll loop runs as a background task on the server's event loop, so the
transport session, the poll loop and on-demand builds all share one loop.
"""

import asyncio
import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import uvicorn

from .config import ConfigurationError, parse_symbols
from .deltas import now_ms
from .orchestrator import SnapshotOrchestrator

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(
    orchestrator: SnapshotOrchestrator,
    poll_interval: Optional[float] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        orchestrator: shared orchestrator (owns registry + history)
        poll_interval: seconds between poll ticks; None disables the
                       background loop (snapshots are then built on demand)
    """
    app = FastAPI(
        title="perpwatch",
        description="Per-instrument price, funding, open-interest snapshots and signals",
        version=API_VERSION,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    start_time = time.time()
    tasks = {}

    @app.on_event("startup")
    async def startup():
        start = getattr(orchestrator.transport, "start", None)
        if start is not None:
            await start()
        if poll_interval is not None:
            tasks["poll"] = asyncio.create_task(orchestrator.run(poll_interval))
            logger.info("Poll loop started (%d symbols)", len(orchestrator.symbols))

    @app.on_event("shutdown")
    async def shutdown():
        orchestrator.stop()
        task = tasks.pop("poll", None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        close = getattr(orchestrator.transport, "close", None)
        if close is not None:
            await close()

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Crypto metrics server is live"

    @app.get("/health")
    async def health():
        last = orchestrator.last_cycle
        return {
            "ok": True,
            "version": API_VERSION,
            "uptime_s": round(time.time() - start_time, 1),
            "symbols": orchestrator.symbols,
            "cycle": orchestrator.cycle,
            "last_cycle_at": last.finished_at if last else None,
            "history": orchestrator.history.stats(),
        }

    @app.get("/api/now")
    async def api_now(
        symbols: Optional[str] = Query(default=None, description="Comma-separated instruments"),
    ):
        """Latest snapshot per instrument; defaults to the tracked list."""
        wanted = parse_symbols(symbols) if symbols is not None else None
        try:
            snapshots = await orchestrator.get_now(wanted)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "data": [s.to_dict() for s in snapshots],
            "checkedAt": now_ms(),
        }

    @app.get("/api/history")
    async def api_history(
        symbol: str = Query(..., description="Instrument, e.g. BTCUSDT"),
    ):
        """Retained history window for one instrument; empty if unknown."""
        sym = symbol.strip().upper()
        if not sym:
            raise HTTPException(status_code=400, detail="symbol is required")
        return {
            "symbol": sym,
            "data": [s.to_dict() for s in orchestrator.get_history(sym)],
        }

    return app


def start_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 10000,
    log_level: str = "info",
) -> None:
    """Run uvicorn in the foreground until interrupted."""
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level, access_log=False)
    server = uvicorn.Server(config)
    server.run()
