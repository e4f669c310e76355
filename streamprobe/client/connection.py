"""
MODULE OVERVIEW:
The outbound HTTP side of a session.

WHAT IS HAPPENING HERE:
We use the HTTPX `send(..., stream=True)` call so the body stays open after the headers
arrive; the parser reads it later from its own task. The connection owns the
`httpx.AsyncClient` and the open response, and releases both in `aclose()`.

Things worth noticing:
  - HTTP/2 is off, and a caller-provided TLS configuration gets its own SSLContext with
    ALPN pinned to "http/1.1". One long-lived stream per connection, no multiplexing.
  - The remote IP is captured from the httpcore `trace` extension when the TCP connect
    completes, the same moment a browser devtools panel would show it.
  - Wall-clock start and monotonic timings are recorded around the send for telemetry.
  - No retries. A failed attempt raises ConnectError and that is the end of it.
"""
import ssl
import time
from datetime import datetime, timezone
from http.cookiejar import CookieJar
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from streamprobe.shared.config import Settings, settings as default_settings
from streamprobe.shared.errors import ConnectError, ReleaseError
from streamprobe.shared.metrics import duration_ms
from streamprobe.shared.models import TLSConfig


def build_ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    """A fresh context per session, speaking HTTP/1.1 only."""
    context = ssl.create_default_context(cafile=tls.ca_file)
    if not tls.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if tls.cert_file:
        context.load_cert_chain(tls.cert_file, keyfile=tls.key_file)
    context.set_alpn_protocols(["http/1.1"])
    return context


class Connection:
    def __init__(
        self,
        url: str,
        method: str = "",
        body: str = "",
        headers: Optional[Dict[str, str]] = None,
        cookie_jar: Optional[CookieJar] = None,
        tls: Optional[TLSConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        self.url = url
        self.method = method or "GET"
        self.body = body
        self.settings = settings or default_settings

        # Caller headers go last so they win over the defaults
        self.headers = httpx.Headers({"User-Agent": self.settings.USER_AGENT})
        self.headers["Accept"] = "text/event-stream"
        for name, value in (headers or {}).items():
            self.headers[name] = value

        limits = httpx.Limits(max_keepalive_connections=0) if self.settings.NO_CONNECTION_REUSE else httpx.Limits()
        self.client = httpx.AsyncClient(
            http2=False,
            verify=build_ssl_context(tls) if tls is not None else True,
            cookies=cookie_jar,
            transport=transport,
            limits=limits,
            timeout=httpx.Timeout(self.settings.CONNECT_TIMEOUT_S, read=self.settings.READ_TIMEOUT_S),
        )

        self.response: Optional[httpx.Response] = None
        self.remote_ip: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self._started: Optional[float] = None
        self._ended: Optional[float] = None

    @property
    def attempted(self) -> bool:
        return self._started is not None

    @property
    def connecting_ms(self) -> float:
        if self._started is None or self._ended is None:
            return 0.0
        return duration_ms(self._started, self._ended)

    def elapsed_ms(self) -> float:
        """Time since the request started, for the end-of-session sample."""
        if self._started is None:
            return 0.0
        return duration_ms(self._started, time.perf_counter())

    async def _trace(self, event_name: str, info: Dict[str, Any]) -> None:
        if event_name != "connection.connect_tcp.complete":
            return
        stream = info.get("return_value")
        if stream is None:
            return
        server_addr = stream.get_extra_info("server_addr")
        if server_addr:
            self.remote_ip = str(server_addr[0])

    async def connect(self) -> httpx.Response:
        try:
            request = self.client.build_request(
                self.method,
                self.url,
                content=self.body.encode("utf-8") if self.body else None,
                headers=self.headers,
                extensions={"trace": self._trace},
            )
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise ConnectError(f"invalid request: {e}", url=self.url, original_error=e) from e

        self.started_at = datetime.now(timezone.utc)
        self._started = time.perf_counter()
        try:
            self.response = await self.client.send(request, stream=True)
        except (httpx.HTTPError, OSError) as e:
            raise ConnectError(str(e) or type(e).__name__, url=self.url, original_error=e) from e
        finally:
            self._ended = time.perf_counter()

        logger.debug(
            f"url={self.url} protocol=sse event=connected method={self.method} "
            f"status={self.response.status_code} ip={self.remote_ip} connecting_ms={self.connecting_ms:.2f}"
        )
        return self.response

    def response_headers(self) -> Dict[str, str]:
        if self.response is None:
            return {}
        joined: Dict[str, list] = {}
        for raw_name, raw_value in self.response.headers.raw:
            name = raw_name.decode("latin-1")
            joined.setdefault(name, []).append(raw_value.decode("latin-1"))
        return {name: ", ".join(values) for name, values in joined.items()}

    async def aclose(self) -> None:
        """Close the response body, then the client's connection pool."""
        try:
            if self.response is not None:
                await self.response.aclose()
            await self.client.aclose()
        except (httpx.HTTPError, OSError, RuntimeError) as e:
            raise ReleaseError(f"closing connection failed: {e}", url=self.url, original_error=e) from e
