"""Entry point for labwatch."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.monitor.models import MonitorView, OverallStatus, Status
from src.monitor.registry import ServiceRegistry
from src.monitor.scheduler import MonitorScheduler
from src.monitor.store import StateStore

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STATUS_STYLE = {
    Status.UP: "[green]up[/green]",
    Status.DOWN: "[red]down[/red]",
    Status.UNKNOWN: "[dim]unknown[/dim]",
}


def run_server(host: str, port: int) -> None:
    """Start the API server; the scheduler runs inside its lifespan."""
    console.print(Panel(f"labwatch API on http://{host}:{port}", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=host,
        port=port,
        reload=False,
    )


async def _check_once(state_file: str) -> MonitorView:
    store = StateStore(state_file)
    services, config = store.load()
    scheduler = MonitorScheduler(ServiceRegistry(services, config))
    try:
        return await scheduler.run_cycle()
    finally:
        await scheduler.stop()


def render_view(view: MonitorView) -> Table:
    table = Table(title=f"Overall: {view.overall.value}")
    table.add_column("Name")
    table.add_column("Target")
    table.add_column("Protocol")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Detail", overflow="fold")
    for s in view.services:
        latency = f"{s.latency_ms:.1f}ms" if s.latency_ms is not None else "-"
        table.add_row(
            s.name, s.target, s.protocol.value, _STATUS_STYLE[s.last_status],
            latency, s.last_error or "",
        )
    return table


def run_check(state_file: str) -> int:
    """Run one cycle against the persisted services and print the result."""
    with console.status("[bold green]Checking services..."):
        view = asyncio.run(_check_once(state_file))
    if not view.services:
        console.print("[dim]No services configured[/dim]")
    else:
        console.print(render_view(view))
    return 0 if view.overall == OverallStatus.HEALTHY else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="labwatch service monitor")
    sub = parser.add_subparsers(dest="command")

    serve_parser = sub.add_parser("serve", help="Start the API server and scheduler")
    serve_parser.add_argument("--host", default=settings.api_host)
    serve_parser.add_argument("--port", type=int, default=settings.api_port)

    check_parser = sub.add_parser("check", help="Check all services once and exit")
    check_parser.add_argument("--state-file", default=settings.state_file)

    args = parser.parse_args()

    if args.command == "serve":
        run_server(args.host, args.port)
    elif args.command == "check":
        sys.exit(run_check(args.state_file))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
