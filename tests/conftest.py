"""
Test Configuration
==================

Shared fixtures: a scripted SSE origin behind httpx.MockTransport, a buffered
metrics reporter and an engine wired to both. No test touches the network.
"""

import asyncio
import json
from http.cookies import SimpleCookie

import httpx
import pytest

from streamprobe.client.engine import SSEEngine
from streamprobe.shared.config import Settings
from streamprobe.shared.metrics import BufferedReporter

BASE_URL = "http://sse.test"

FIXTURE_STREAM = (
    b"retry: 10000\n"
    b": hello\n"
    b"id: ABCD\n"
    b'data: {"ping": "pong"}\n'
    b'data: {"hello": "sse"}\n'
    b"\n"
    b"event: EFGH\n"
    b'data: {"hello": "sse"}\n'
    b"\n"
)

PONG_STREAM = b"id: pong\n" b'data: {"ping": "pong"}\n\n'

ECHO_STREAM = b'data: {"ping": "pong"}\n\n'


async def _hang_after(first: bytes):
    yield first
    await asyncio.Event().wait()


async def _fail_after(first: bytes):
    yield first
    raise httpx.ReadError("connection reset by peer")


async def _broken_after(first: bytes):
    yield first
    raise RuntimeError("decoder exploded")


async def _never_respond() -> httpx.Response:
    await asyncio.Event().wait()


async def _chunked(payload: bytes, size: int):
    for start in range(0, len(payload), size):
        yield payload[start:start + size]


def sse_origin(request: httpx.Request) -> httpx.Response:
    """Plays the role of the remote event-stream server."""
    if request.url.host != "sse.test":
        raise httpx.ConnectError(f"name resolution failed for {request.url.host!r}", request=request)

    headers = {"Content-Type": "text/event-stream"}
    path = request.url.path

    if path == "/sse":
        if request.method == "POST":
            assert request.headers["content-type"] == "application/json"
            assert request.headers["authorization"] == "Bearer XXXX"
            assert json.loads(request.content) == {"ping": True}
            return httpx.Response(200, headers=headers, content=PONG_STREAM)
        return httpx.Response(200, headers=headers, content=FIXTURE_STREAM)

    if path == "/sse-invalid":
        return httpx.Response(200, headers=headers, content=b"junk\n")

    if path == "/sse-echo-useragent":
        headers["X-Echo-User-Agent"] = request.headers.get("user-agent", "")
        return httpx.Response(200, headers=headers, content=ECHO_STREAM)

    if path == "/sse-echo-someheader":
        cookie = SimpleCookie(request.headers.get("cookie", ""))
        if "someheader" in cookie:
            headers["Echo-Someheader"] = cookie["someheader"].value
        return httpx.Response(200, headers=headers, content=ECHO_STREAM)

    if path == "/sse-echo-accept":
        headers["X-Echo-Accept"] = request.headers.get("accept", "")
        return httpx.Response(200, headers=headers, content=ECHO_STREAM)

    if path == "/sse-multi-header":
        return httpx.Response(
            200,
            headers=[("Content-Type", "text/event-stream"), ("X-Multi", "a"), ("X-Multi", "b")],
            content=ECHO_STREAM,
        )

    if path == "/sse-hang":
        return httpx.Response(200, headers=headers, content=_hang_after(ECHO_STREAM))

    if path == "/sse-broken":
        return httpx.Response(200, headers=headers, content=_broken_after(ECHO_STREAM))

    if path == "/connect-hang":
        # MockTransport awaits a coroutine result, so the request never completes
        return _never_respond()

    if path == "/sse-read-error":
        return httpx.Response(200, headers=headers, content=_fail_after(ECHO_STREAM))

    if path == "/sse-chunked":
        return httpx.Response(200, headers=headers, content=_chunked(FIXTURE_STREAM, 7))

    if path == "/sse-junk-then-event":
        return httpx.Response(200, headers=headers, content=b"junk\n" + ECHO_STREAM)

    return httpx.Response(404, content=b"404 page not found\n")


@pytest.fixture
def settings() -> Settings:
    return Settings(USER_AGENT="TestUserAgent", THROW=True)


@pytest.fixture
def reporter() -> BufferedReporter:
    return BufferedReporter()


@pytest.fixture
def transport() -> httpx.MockTransport:
    return httpx.MockTransport(sse_origin)


@pytest.fixture
def engine(settings, reporter, transport) -> SSEEngine:
    return SSEEngine(reporter=reporter, settings=settings, transport=transport)
