"""
MODULE OVERVIEW:
The entry point: `SSEEngine.open(url, setup, params)`.

WHAT IS HAPPENING HERE:
The engine holds everything a session borrows but does not own: settings, the metrics
reporter, the default cookie jar, TLS configuration, an optional pre-built transport and
default tags. `open()` wires those into a Connection and a Session, performs the request,
runs the caller's setup function and then blocks in the session's control loop until
the session ends. The return value is a ResponseSummary.

Connect failures are reported to "error" handlers and then either raised or folded into
the summary, depending on `settings.THROW`. Setup failures always raise.

The optional `cancel` event is watched from the first byte of the request: if it fires
while connecting, the request is abandoned and no setup function or handler ever runs.
"""
import asyncio
from http.cookiejar import CookieJar
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx
from loguru import logger

from streamprobe.client.connection import Connection
from streamprobe.client.session import Session
from streamprobe.shared.config import Settings, settings as default_settings
from streamprobe.shared.errors import ConnectError
from streamprobe.shared.events import EventKind
from streamprobe.shared.metrics import BufferedReporter, MetricsReporter
from streamprobe.shared.models import OpenParams, ResponseSummary, TLSConfig

SetupFn = Callable[[Session], Any]


class SSEEngine:
    def __init__(
        self,
        reporter: Optional[MetricsReporter] = None,
        settings: Optional[Settings] = None,
        cookie_jar: Optional[CookieJar] = None,
        tls: Optional[TLSConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tags: Optional[Dict[str, str]] = None,
    ):
        self.reporter = reporter if reporter is not None else BufferedReporter()
        self.settings = settings or default_settings
        self.cookie_jar = cookie_jar
        self.tls = tls
        self.transport = transport
        self.tags = dict(tags or {})

    def _session_tags(self, url: str, params: OpenParams) -> Dict[str, str]:
        tags = dict(self.tags)
        tags.update(params.tags)
        if "url" in self.settings.SYSTEM_TAGS:
            tags["url"] = url
        return tags

    async def _connect(self, connection: Connection, cancel: Optional[asyncio.Event]) -> Optional[httpx.Response]:
        """Perform the request, giving up as soon as `cancel` fires. Returns None when cancelled first."""
        if cancel is None:
            return await connection.connect()

        connecting = asyncio.ensure_future(connection.connect())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({connecting, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not connecting.done():
                connecting.cancel()
                await asyncio.wait([connecting])

        if connecting.cancelled():
            return None
        return connecting.result()

    async def open(
        self,
        url: str,
        setup: SetupFn,
        params: Union[OpenParams, Mapping[str, Any], None] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> ResponseSummary:
        if not callable(setup):
            raise TypeError("setup must be a function taking the session")
        if not isinstance(params, OpenParams):
            params = OpenParams.model_validate(dict(params or {}))

        tags = self._session_tags(url, params)
        connection = Connection(
            url,
            method=params.method,
            body=params.body,
            headers=params.headers,
            cookie_jar=params.jar if params.jar is not None else self.cookie_jar,
            tls=self.tls,
            transport=self.transport,
            settings=self.settings,
        )
        session = Session(url, connection, self.reporter, tags, settings=self.settings, cancel=cancel)

        try:
            try:
                response = await self._connect(connection, cancel)
            except ConnectError as e:
                session.push_connecting_sample()
                logger.warning(f"url={url} protocol=sse event=connect_failed reason='{e}'")
                # The setup function has not run yet, so only handlers registered
                # by that point (none, in practice) can observe this
                await session.dispatch(EventKind.ERROR, e)
                if self.settings.THROW:
                    raise
                return ResponseSummary(url=url, error=str(e))

            if response is None or session.torn_down:
                # Cancelled before setup: no handler has been registered, nothing to tell
                logger.info(f"url={url} protocol=sse event=upstream_cancelled stage=connect")
                session.mark_torn_down()
                return session.summary()

            if "status" in self.settings.SYSTEM_TAGS:
                tags["status"] = str(response.status_code)
            if "ip" in self.settings.SYSTEM_TAGS and connection.remote_ip:
                tags["ip"] = connection.remote_ip
            session.push_connecting_sample()

            logger.info(f"url={url} protocol=sse event=open method={connection.method} status={response.status_code}")
            return await session.run(setup)
        except asyncio.CancelledError:
            session.mark_torn_down()
            raise
        finally:
            await session.release_quietly()
            session.push_request_samples()
