"""
MODULE OVERVIEW:
The Server-Sent Events wire decoder.

WHAT IS HAPPENING HERE:
We decode `text/event-stream` ourselves instead of leaning on a helper library, because
the session needs to see every line shape: comments, ids, names, data, `retry:`, frame
boundaries and anything else (which is a protocol violation, not something to skip).

Decoding happens in two layers:
  1. `FrameDecoder` is a pure state machine. Feed it one line (terminator included),
     get back an `Event` at a frame boundary, a `ProtocolViolation` for a junk line,
     or `None` while a frame is still being accumulated.
  2. `EventStreamParser` drives the decoder over an async byte stream (an httpx body),
     splits chunks into lines, and ends the sequence with exactly one terminal item:
     `STREAM_CLOSED` on a clean end of input, or a `StreamReadError` if the read failed.

Protocol violations are reported and parsing continues with the next line.
"""
from typing import AsyncIterable, AsyncIterator, Dict, Iterator, List, Optional, Union

import httpx
from loguru import logger

from streamprobe.shared.errors import ProtocolViolation, StreamReadError
from streamprobe.shared.models import Event


class StreamClosed:
    """Terminal marker: the body ended cleanly."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "STREAM_CLOSED"


STREAM_CLOSED = StreamClosed()

ParserItem = Union[Event, ProtocolViolation, StreamReadError, StreamClosed]

# Longer prefix first so "id: X" strips the space and "id:X" does not need one
_FIELD_PREFIXES = (
    (b"id: ", "id"),
    (b"id:", "id"),
    (b": ", "comment"),
    (b":", "comment"),
    (b"event: ", "name"),
    (b"event:", "name"),
)
_DATA_PREFIXES = (b"data: ", b"data:")
_RETRY_PREFIX = b"retry:"
_BLANK_LINES = (b"\n", b"\r\n")


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _strip_terminator(line: bytes) -> bytes:
    if line.endswith(b"\r\n"):
        return line[:-2]
    if line.endswith(b"\n"):
        return line[:-1]
    return line


def split_lines(buffer: bytearray) -> Iterator[bytes]:
    """Pop every complete line (terminator included) off the front of `buffer`."""
    start = 0
    while True:
        end = buffer.find(b"\n", start)
        if end < 0:
            break
        yield bytes(buffer[start:end + 1])
        start = end + 1
    del buffer[:start]


class FrameDecoder:
    def __init__(self, url: Optional[str] = None):
        self.url = url
        self._fields: Dict[str, str] = {}
        self._data = bytearray()
        self._reset()

    def _reset(self) -> None:
        self._fields = {"id": "", "comment": "", "name": ""}
        self._data = bytearray()

    def feed(self, line: bytes) -> Optional[Union[Event, ProtocolViolation]]:
        if line in _BLANK_LINES:
            return self._finish_frame()

        body = _strip_terminator(line)
        for prefix, field in _FIELD_PREFIXES:
            if line.startswith(prefix):
                self._fields[field] = _decode(body[len(prefix):])
                return None

        for prefix in _DATA_PREFIXES:
            if line.startswith(prefix):
                self._data += body[len(prefix):] + b"\n"
                return None

        if line.startswith(_RETRY_PREFIX):
            # Reconnection interval is not supported: parsed and dropped
            return None

        return ProtocolViolation(_decode(body), url=self.url)

    def _finish_frame(self) -> Event:
        event = Event(
            id=self._fields["id"],
            comment=self._fields["comment"],
            name=self._fields["name"],
            data=_decode(bytes(self._data)).rstrip("\r\n"),
        )
        self._reset()
        return event


class EventStreamParser:
    """
    Lazy, single-use decoder over an async byte stream.

    Iterating it yields Events and ProtocolViolations in wire order, followed by one
    terminal item (STREAM_CLOSED or StreamReadError). A second iteration raises RuntimeError.
    """
    def __init__(self, chunks: AsyncIterable[bytes], url: Optional[str] = None):
        self.url = url
        self._chunks = chunks
        self._decoder = FrameDecoder(url)
        self._started = False

    def __aiter__(self) -> AsyncIterator[ParserItem]:
        if self._started:
            raise RuntimeError("EventStreamParser is not restartable")
        self._started = True
        return self._run()

    async def _run(self) -> AsyncIterator[ParserItem]:
        buffer = bytearray()
        failure: Optional[StreamReadError] = None
        try:
            async for chunk in self._chunks:
                buffer += chunk
                for line in split_lines(buffer):
                    item = self._decoder.feed(line)
                    if item is None:
                        continue
                    if isinstance(item, ProtocolViolation):
                        logger.warning(f"url={self.url} protocol=sse event=protocol_violation line={item.line!r}")
                    yield item
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            failure = StreamReadError(f"read failed: {e}", url=self.url, original_error=e)

        if failure is not None:
            logger.warning(f"url={self.url} protocol=sse event=read_error reason='{failure.original_error}'")
            yield failure
            return

        if buffer:
            logger.debug(f"url={self.url} protocol=sse event=partial_line_dropped bytes={len(buffer)}")
        yield STREAM_CLOSED


def parse_bytes(payload: bytes, url: Optional[str] = None) -> List[ParserItem]:
    """Decode a complete, already-received event stream."""
    decoder = FrameDecoder(url)
    buffer = bytearray(payload)
    items: List[ParserItem] = []
    for line in split_lines(buffer):
        item = decoder.feed(line)
        if item is not None:
            items.append(item)
    items.append(STREAM_CLOSED)
    return items
