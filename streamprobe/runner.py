"""
CLI entrypoint for streamprobe.
"""
import asyncio
import sys
from typing import Dict, List

import httpx
import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from streamprobe.client.engine import SSEEngine
from streamprobe.client.session import Session
from streamprobe.client.visualizer import Visualizer
from streamprobe.shared.config import settings
from streamprobe.shared.metrics import BufferedReporter
from streamprobe.shared.models import Event, OpenParams, ResponseSummary

app = typer.Typer(help="streamprobe: Server-Sent Events client and demo server")
console = Console()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def parse_pairs(items: List[str], sep: str) -> Dict[str, str]:
    """Turn ["k=v", ...] into a dict. Raises typer.BadParameter on a malformed item."""
    pairs = {}
    for item in items:
        key, found, value = item.partition(sep)
        if not found or not key.strip():
            raise typer.BadParameter(f"expected KEY{sep}VALUE, got {item!r}")
        pairs[key.strip()] = value.strip()
    return pairs


def print_event_setup(close_after: int):
    """Setup function that prints every occurrence and optionally closes after N events."""
    def setup(session: Session):
        received = 0

        async def on_event(event: Event):
            nonlocal received
            received += 1
            name = event.name or "message"
            console.print(f"[cyan]{name}[/] id={event.id!r} data={event.data}")
            if close_after and received >= close_after:
                await session.close()

        session.on("open", lambda: console.print(f"[green]connected[/] {session.url}"))
        session.on("event", on_event)
        session.on("error", lambda err: console.print(f"[red]error[/] {err}"))
    return setup


def print_summary(summary: ResponseSummary, reporter: BufferedReporter) -> None:
    if summary.error:
        console.print(f"[red bold]failed[/] {summary.url}: {summary.error}")
    else:
        console.print(f"[bold]{summary.url}[/] status={summary.status}")
        for name, value in summary.headers.items():
            console.print(f"  {name}: {value}")

    table = Table(title="Samples")
    table.add_column("Metric", style="magenta")
    table.add_column("Value", justify="right", style="green")
    table.add_column("Tags", style="cyan")
    for sample in reporter.samples():
        tags = " ".join(f"{k}={v}" for k, v in sorted(sample.tags.items()))
        table.add_row(sample.metric.value, f"{sample.value:.2f}", tags)
    console.print(table)


async def run_session(
    engine: SSEEngine,
    url: str,
    params: OpenParams,
    close_after: int,
    timeout: float,
    watch: bool,
) -> ResponseSummary:
    cancel = asyncio.Event()
    if timeout > 0:
        asyncio.get_running_loop().call_later(timeout, cancel.set)

    if watch:
        visualizer = Visualizer(url, close_after=close_after)
        return await visualizer.run(engine.open(url, visualizer.attach, params, cancel=cancel))
    return await engine.open(url, print_event_setup(close_after), params, cancel=cancel)


@app.command()
def server():
    """Start the demo SSE server using Uvicorn."""
    import uvicorn
    typer.echo(f"Starting server on {settings.HOST}:{settings.PORT}...")
    uvicorn.run("streamprobe.server.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


@app.command("open")
def open_stream(
    url: str = typer.Argument(..., help="Event stream URL"),
    method: str = typer.Option("GET", help="HTTP method"),
    body: str = typer.Option("", help="Request body"),
    header: List[str] = typer.Option([], "--header", "-H", help="Request header as NAME:VALUE, repeatable"),
    tag: List[str] = typer.Option([], "--tag", help="Metric tag as KEY=VALUE, repeatable"),
    close_after: int = typer.Option(0, help="Close the session after this many events (0 = never)"),
    timeout: float = typer.Option(0.0, help="Cancel the session after this many seconds (0 = never)"),
    watch: bool = typer.Option(False, "--watch", help="Show the live dashboard instead of printing events"),
):
    """Open one SSE session and report its events and samples."""
    configure_logging(settings.LOG_LEVEL)
    params = OpenParams(
        headers=parse_pairs(header, ":"),
        tags=parse_pairs(tag, "="),
        method=method,
        body=body,
    )
    reporter = BufferedReporter()
    engine = SSEEngine(reporter=reporter)

    try:
        summary = asyncio.run(run_session(engine, url, params, close_after, timeout, watch))
    except KeyboardInterrupt:
        raise typer.Exit(130)

    print_summary(summary, reporter)
    if summary.error:
        raise typer.Exit(1)


@app.command()
def stats(base_url: str = typer.Option(f"http://{settings.HOST}:{settings.PORT}", help="Demo server base URL")):
    """Query the demo server for live stream stats."""
    resp = httpx.get(f"{base_url.rstrip('/')}/stats")
    typer.echo(resp.json())


if __name__ == "__main__":
    app()
