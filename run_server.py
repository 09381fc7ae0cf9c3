#!/usr/bin/env python3
"""
Run the perpwatch snapshot server.

Usage:
    python run_server.py [--symbols SYM1,SYM2] [--port PORT] [--interval SECONDS]

Examples:
    python run_server.py                          # symbols/port from env (SYMBOLS, PORT)
    python run_server.py --symbols BTCUSDT,ETHUSDT --port 8080
    python run_server.py --once                   # one poll, print a table, exit
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console

from perpwatch.api import create_app, start_server
from perpwatch.config import ConfigurationError, load_settings, parse_symbols
from perpwatch.history import HistoryStore
from perpwatch.orchestrator import SnapshotOrchestrator
from perpwatch.transport import BinanceTransport
from perpwatch.viewer import print_snapshots


async def run_once(orchestrator: SnapshotOrchestrator, console: Console) -> None:
    async with orchestrator.transport:
        snapshots = await orchestrator.poll_once()
    print_snapshots(snapshots, console)


def main():
    parser = argparse.ArgumentParser(
        description="perpwatch - price / funding / OI snapshots and signals"
    )
    parser.add_argument(
        "--symbols", "-s", type=str, default=None,
        help="Comma-separated instruments (default: $SYMBOLS)"
    )
    parser.add_argument("--host", type=str, default=None, help="API host (default: $HOST)")
    parser.add_argument("--port", "-p", type=int, default=None, help="API port (default: $PORT)")
    parser.add_argument(
        "--interval", "-i", type=float, default=None,
        help="Seconds between polls (default: $POLL_INTERVAL)"
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single poll, print the snapshots and exit"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    console = Console()
    try:
        settings = load_settings()
        if args.symbols is not None:
            settings.symbols = parse_symbols(args.symbols)
            if not settings.symbols:
                raise ConfigurationError("--symbols is empty")
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/]")
        sys.exit(2)

    if args.host is not None:
        settings.host = args.host
    if args.port is not None:
        settings.port = args.port
    if args.interval is not None:
        settings.poll_interval = args.interval

    orchestrator = SnapshotOrchestrator(
        transport=BinanceTransport(timeout=settings.http_timeout),
        symbols=settings.symbols,
        history=HistoryStore(window_ms=settings.history_window_ms),
        thresholds=settings.thresholds,
        # two missed ticks before an on-demand read rebuilds
        max_age_ms=int(2 * settings.poll_interval * 1000),
    )

    if args.once:
        asyncio.run(run_once(orchestrator, console))
        return

    console.print("\n[bold blue]perpwatch[/]")
    console.print(f"Tracking: {', '.join(settings.symbols)}")
    console.print(f"Poll interval: {settings.poll_interval:.0f}s")
    console.print(f"[cyan]Listening on http://{settings.host}:{settings.port}[/]\n")

    app = create_app(orchestrator, poll_interval=settings.poll_interval)
    try:
        start_server(app, host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        pass
    console.print("[green]Goodbye![/]")


if __name__ == "__main__":
    main()
