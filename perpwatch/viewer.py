"""Rich console table of snapshots."""

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .snapshot import Snapshot

SIGNAL_STYLES = {
    "BUY": "bold green",
    "SELL": "bold red",
    "NEUTRAL": "dim",
}


def _fmt(value: Optional[float], fmt: str) -> str:
    return "-" if value is None else format(value, fmt)


def render_table(snapshots: Iterable[Snapshot]) -> Table:
    t = Table(box=box.SIMPLE_HEAVY, title="Snapshots")
    t.add_column("Symbol", style="cyan")
    t.add_column("Price", justify="right")
    t.add_column("15m", justify="right")
    t.add_column("4h", justify="right")
    t.add_column("Funding", justify="right")
    t.add_column("OI 4h", justify="right")
    t.add_column("Signal", justify="center")
    t.add_column("Score", justify="right")
    t.add_column("Reasons")

    for snap in snapshots:
        if snap.degraded:
            t.add_row(snap.symbol, "", "", "", "", "", "[red]ERROR[/]", "", snap.error)
            continue
        d = snap.deltas
        sig = snap.signal
        funding = snap.funding_rate * 100 if snap.funding_rate is not None else None
        signal_name = sig.signal.value if sig else "-"
        style = SIGNAL_STYLES.get(signal_name, "")
        t.add_row(
            snap.symbol,
            _fmt(snap.price, ",.6g"),
            _fmt(d.price_change_15m if d else None, "+.2f"),
            _fmt(d.price_change_4h if d else None, "+.2f"),
            _fmt(funding, "+.4f"),
            _fmt(d.oi_change_4h if d else None, "+.2f"),
            f"[{style}]{signal_name}[/]" if style else signal_name,
            str(sig.score) if sig else "-",
            "; ".join(sig.reasons) if sig else "",
        )
    return t


def print_snapshots(snapshots: Iterable[Snapshot], console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(render_table(snapshots))
