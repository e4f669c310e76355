"""
MODULE OVERVIEW:
The Rich Terminal Dashboard for one SSE session.

WHAT IS HAPPENING HERE:
The visualizer registers its own handlers on the session, so every update to its state
happens on the session's control loop. A separate refresh loop redraws the Layout four
times a second until the `open()` task finishes.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
from typing import Awaitable
import asyncio

from streamprobe.client.session import Session
from streamprobe.shared.models import Event, ResponseSummary

class Visualizer:
    def __init__(self, url: str, close_after: int = 0):
        self.url = url
        self.close_after = close_after
        self.recent_events = deque(maxlen=10)
        self.status = "CONNECTING"
        self.timeline = deque(maxlen=5)
        self.events_received = 0
        self.errors_seen = 0
        self.last_error = ""

    def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {status}")

    def on_event(self, event: Event):
        self.events_received += 1
        ts = datetime.now().strftime("%H:%M:%S")
        data = event.data.replace("\n", " ")
        data_str = data[:40] + "..." if len(data) > 40 else data
        self.recent_events.appendleft((ts, event.id, event.name or "message", data_str))

    def on_error(self, error: Exception):
        self.errors_seen += 1
        self.last_error = str(error)
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] Error: {str(error)[:40]}")

    def attach(self, session: Session):
        """Setup function for `SSEEngine.open()`."""
        async def event_hook(event: Event):
            self.on_event(event)
            if self.close_after and self.events_received >= self.close_after:
                self.on_status_change("CLOSING")
                await session.close()

        session.on("open", lambda: self.on_status_change("ACTIVE"))
        session.on("event", event_hook)
        session.on("error", self.on_error)

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        color = "green" if "ACTIVE" in self.status else "yellow" if "CONNECTING" in self.status else "red"
        layout["header"].update(Panel(f"[{color} bold]{self.url} | Status: {self.status}[/]", style=color))

        table = Table(title="Live Event Feed", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Id", style="blue")
        table.add_column("Name", style="magenta")
        table.add_column("Data", style="green")

        for e in self.recent_events:
            table.add_row(e[0], e[1], e[2], e[3])

        layout["left"].update(Panel(table, title="Feed"))

        stats_text = (
            f"Events Received: {self.events_received}\n"
            f"Errors: {self.errors_seen}\n"
            f"Last Error: {self.last_error or '-'}"
        )
        layout["stats"].update(Panel(stats_text, title="Session Stats"))

        timeline_text = "\n".join(self.timeline)
        layout["timeline"].update(Panel(timeline_text, title="Timeline"))

        return layout

    async def run(self, opening: Awaitable[ResponseSummary]) -> ResponseSummary:
        session_task = asyncio.ensure_future(opening)

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not session_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
            self.on_status_change("CLOSED")
            live.update(self.generate_layout())

        return session_task.result()
