"""
Exception hierarchy for streamprobe sessions.

    StreamProbeError (base)
    ├── ConnectError       - no response: DNS, TCP, TLS, bad URL
    ├── ProtocolViolation  - a line the SSE grammar does not know
    ├── StreamReadError    - the body read failed before end of stream
    └── ReleaseError       - closing the response failed
"""
from typing import Optional


class StreamProbeError(Exception):
    """Base exception for every failure a session can surface.

    Attributes:
        message: Human-readable error description.
        url: Target URL of the session, when known.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.message = message
        self.url = url
        self.original_error = original_error
        super().__init__(message)


class ConnectError(StreamProbeError):
    """Raised when the request never produced a response."""


class ProtocolViolation(StreamProbeError):
    """An unrecognized, non-blank line in the event stream.

    Attributes:
        line: The offending line, decoded, without its terminator.
    """

    def __init__(self, line: str, url: Optional[str] = None):
        self.line = line
        super().__init__(f"unknown event: {line}", url=url)


class StreamReadError(StreamProbeError):
    """Reading the response body failed for a reason other than end of stream."""


class ReleaseError(StreamProbeError):
    """Closing the response or its connection failed."""
