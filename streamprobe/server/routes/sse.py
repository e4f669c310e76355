"""
MODULE OVERVIEW:
The demo server's SSE endpoints.

WHAT IS HAPPENING HERE:
Every endpoint hands sse-starlette an async generator of frames. The generator is
wrapped by `_tracked()` so the registry sees the stream open, every frame go out, and
the stream close, whether it ended normally or the client hung up.
"""
import json
from typing import AsyncIterator, Iterable, Union

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from streamprobe.server.frames import (
    Frame,
    echo_frames,
    fixture_frames,
    junk_frames,
    pong_frames,
    ticker_frames,
)
from streamprobe.server.stream_registry import registry
from streamprobe.shared.config import settings

router = APIRouter()

async def _tracked(path: str, frames: Union[Iterable[Frame], AsyncIterator[Frame]]) -> AsyncIterator[Frame]:
    stream_id = registry.open_stream(path)
    try:
        if hasattr(frames, "__aiter__"):
            async for frame in frames:
                registry.count_frame()
                yield frame
        else:
            for frame in frames:
                registry.count_frame()
                yield frame
    finally:
        registry.close_stream(stream_id)

def _stream(request: Request, frames, headers: dict | None = None) -> EventSourceResponse:
    return EventSourceResponse(
        _tracked(request.url.path, frames),
        headers=headers,
        ping=int(settings.HEARTBEAT_INTERVAL_S),
    )

@router.get("/sse")
async def sse_fixture(request: Request):
    return _stream(request, fixture_frames())

@router.post("/sse")
async def sse_fixture_post(request: Request):
    raw = await request.body()
    try:
        body = json.loads(raw or b"null")
    except json.JSONDecodeError:
        body = None
    if body != {"ping": True}:
        return JSONResponse({"error": "expected body {\"ping\": true}"}, status_code=400)
    return _stream(request, pong_frames())

@router.get("/sse-invalid")
async def sse_invalid(request: Request):
    return _stream(request, junk_frames())

@router.get("/sse-echo-useragent")
async def sse_echo_useragent(request: Request):
    headers = {}
    user_agent = request.headers.get("user-agent")
    if user_agent:
        headers["X-Echo-User-Agent"] = user_agent
    return _stream(request, echo_frames(), headers=headers)

@router.get("/sse-echo-someheader")
async def sse_echo_someheader(request: Request):
    headers = {}
    someheader = request.cookies.get("someheader")
    if someheader is not None:
        headers["Echo-Someheader"] = someheader
    return _stream(request, echo_frames(), headers=headers)

@router.get("/ticker")
async def sse_ticker(
    request: Request,
    count: int = Query(10, ge=1, le=10_000, description="Number of events before the stream ends"),
    interval: float = Query(0.5, ge=0.0, description="Seconds between events"),
):
    return _stream(request, ticker_frames(count, interval))

@router.api_route("/status/{code}", methods=["GET", "POST"])
async def status(code: int):
    return PlainTextResponse(f"status {code}\n", status_code=code)
