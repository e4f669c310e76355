"""
MODULE OVERVIEW:
The frames the demo server plays back.

WHAT IS HAPPENING HERE:
Each function here produces exactly what one endpoint puts on the wire. The fixed
fixtures exercise every line shape the client decoder knows (retry, comment, id,
multi-line data, named events) plus one line it does not. The ticker is the only
"live" source: it simulates a price feed so there is something to watch in the CLI.

Frames are either `ServerSentEvent` objects (encoded by sse-starlette) or raw bytes,
which sse-starlette writes to the socket untouched.
"""

import asyncio
import json
import random
from typing import AsyncIterator, List, Union

from sse_starlette.sse import ServerSentEvent

Frame = Union[ServerSentEvent, bytes]


def fixture_frames() -> List[Frame]:
    """Two events: one with id, comment and two data lines, one named event."""
    return [
        ServerSentEvent(
            comment="hello",
            id="ABCD",
            data='{"ping": "pong"}\n{"hello": "sse"}',
            retry=10000,
        ),
        ServerSentEvent(event="EFGH", data='{"hello": "sse"}'),
    ]


def pong_frames() -> List[Frame]:
    return [ServerSentEvent(id="pong", data='{"ping": "pong"}')]


def junk_frames() -> List[Frame]:
    # Not SSE at all: the client must report it as a protocol violation
    return [b"junk\n"]


def echo_frames() -> List[Frame]:
    return [ServerSentEvent(data='{"ping": "pong"}')]


async def ticker_frames(count: int, interval_s: float = 0.5) -> AsyncIterator[Frame]:
    """Emits `count` fake ticker events, one every `interval_s` seconds, then ends."""
    symbols = ["AAPL", "NVDA", "TSLA", "MSFT", "AMZN"]
    prices = {s: random.uniform(100.0, 900.0) for s in symbols}

    for seq in range(1, count + 1):
        symbol = random.choice(symbols)
        delta = random.uniform(-2.5, 2.5)
        prices[symbol] += delta

        yield ServerSentEvent(
            id=str(seq),
            event="tick",
            data=json.dumps({
                "ticker": symbol,
                "price": round(prices[symbol], 2),
                "delta": round(delta, 2),
            }),
        )
        if seq < count:
            await asyncio.sleep(interval_s)


def encode(frame: Frame) -> bytes:
    """Wire bytes of one frame, as sse-starlette would send them."""
    if isinstance(frame, bytes):
        return frame
    return frame.encode()
