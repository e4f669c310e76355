"""
MODULE OVERVIEW:
One SSE session: the handle a caller's setup function receives, the control loop that
feeds its handlers, and the one-shot release that ends it.

WHAT IS HAPPENING HERE:
Two tasks cooperate per session:
  - the reader task runs the EventStreamParser over the response body and pushes every
    item onto a bounded asyncio.Queue. It never touches a handler.
  - the control loop (the task awaiting `SSEEngine.open()`) is the only consumer of that
    queue and the only place handlers are called. Callers may keep non-thread-safe,
    non-reentrant state in their handlers because of that.

Every way out goes through `_release()`: end of stream, explicit `close()`, upstream
cancellation, setup failure, a handler raising. Its state guard moves OPEN -> CLOSING ->
CLOSED exactly once; later callers return immediately. Release cancels the reader, closes
the response and sets the "done" event the loop is waiting on.
"""
import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from loguru import logger

from streamprobe.client.connection import Connection
from streamprobe.client.parser import EventStreamParser, ParserItem, StreamClosed
from streamprobe.shared.config import Settings, settings as default_settings
from streamprobe.shared.errors import ReleaseError, StreamReadError
from streamprobe.shared.events import CallbackRegistry, EventKind, Handler
from streamprobe.shared.metrics import MetricsReporter, connecting_samples, event_sample, request_samples
from streamprobe.shared.models import Event, ResponseSummary, SampleSet


class ReleaseState(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Session:
    def __init__(
        self,
        url: str,
        connection: Connection,
        reporter: MetricsReporter,
        tags: Dict[str, str],
        settings: Optional[Settings] = None,
        cancel: Optional[asyncio.Event] = None,
    ):
        self.url = url
        self.connection = connection
        self.reporter = reporter
        self.tags = tags
        self.settings = settings or default_settings

        self.events_received = 0
        self.errors_seen = 0

        self._registry = CallbackRegistry()
        self._upstream = cancel
        self._torn_down = False
        self._done = asyncio.Event()
        self._release_state = ReleaseState.OPEN
        self._signals: asyncio.Queue[ParserItem] = asyncio.Queue(maxsize=self.settings.SIGNAL_QUEUE_SIZE)
        self._reader: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    # ==========================
    # CALLER SURFACE
    # ==========================
    def on(self, kind: Union[EventKind, str], handler: Handler) -> None:
        """Register `handler` for "open", "event" or "error"."""
        self._registry.on(kind, handler)

    async def close(self) -> None:
        """
        End the session. Safe to call any number of times, from a handler or from another task.
        A release failure is dispatched to "error" handlers when called from the control loop,
        and raised to the caller otherwise.
        """
        in_loop = self._loop_task is not None and asyncio.current_task() is self._loop_task
        error = await self._release(dispatch_errors=in_loop)
        self._cancel_request()
        if error is not None and not in_loop:
            raise error

    async def release_quietly(self) -> None:
        """Release without dispatching to any handler. Failures are only logged."""
        await self._release(dispatch_errors=False)

    @property
    def closed(self) -> bool:
        return self._done.is_set()

    @property
    def release_state(self) -> ReleaseState:
        return self._release_state

    # ==========================
    # TELEMETRY
    # ==========================
    @property
    def torn_down(self) -> bool:
        return self._torn_down or (self._upstream is not None and self._upstream.is_set())

    def mark_torn_down(self) -> None:
        self._torn_down = True

    def push(self, sample_set: SampleSet) -> None:
        if self.torn_down:
            return
        self.reporter.emit(sample_set)

    def push_connecting_sample(self) -> None:
        if self.connection.attempted:
            self.push(connecting_samples(self.tags, self.connection.started_at, self.connection.connecting_ms))

    def push_request_samples(self) -> None:
        if self.connection.attempted:
            self.push(request_samples(self.tags, self.connection.connecting_ms, self.connection.elapsed_ms()))

    # ==========================
    # DISPATCH
    # ==========================
    async def dispatch(self, kind: EventKind, *args: Any) -> int:
        return await self._registry.dispatch(kind, *args, should_stop=self._done.is_set)

    def summary(self) -> ResponseSummary:
        response = self.connection.response
        if response is None:
            return ResponseSummary(url=self.url)
        return ResponseSummary(
            url=self.url,
            status=response.status_code,
            headers=self.connection.response_headers(),
        )

    async def run(self, setup: Callable[["Session"], Any]) -> ResponseSummary:
        """Opening -> Running -> Closed. Must be awaited by the task that owns the handlers."""
        self._loop_task = asyncio.current_task()

        try:
            result = setup(self)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"url={self.url} protocol=sse event=setup_failed reason='{e}'")
            await self._release(dispatch_errors=True)
            raise

        if self._done.is_set():
            return self.summary()
        if self.torn_down:
            logger.info(f"url={self.url} protocol=sse event=upstream_cancelled stage=setup")
            await self._release(dispatch_errors=False)
            return self.summary()

        await self.dispatch(EventKind.OPEN)
        # An "open" handler may already have ended the session
        if self._done.is_set():
            return self.summary()
        self._reader = asyncio.create_task(self._read_events())

        try:
            return await self._control_loop()
        except asyncio.CancelledError:
            self._torn_down = True
            raise
        finally:
            await self._release(dispatch_errors=False)

    # ==========================
    # PRODUCER
    # ==========================
    async def _read_events(self) -> None:
        parser = EventStreamParser(self.connection.response.aiter_bytes(), url=self.url)
        try:
            async for item in parser:
                await self._signals.put(item)
        except Exception as e:
            # Anything the parser did not classify still ends the read as an "error"
            logger.exception(f"url={self.url} protocol=sse event=reader_failed reason='{e}'")
            await self._signals.put(StreamReadError(f"read failed: {e}", url=self.url, original_error=e))

    # ==========================
    # CONTROL LOOP
    # ==========================
    async def _control_loop(self) -> ResponseSummary:
        done_waiter = asyncio.ensure_future(self._done.wait())
        watchers = {done_waiter}
        upstream_waiter = None
        if self._upstream is not None:
            upstream_waiter = asyncio.ensure_future(self._upstream.wait())
            watchers.add(upstream_waiter)

        getter = None
        try:
            while not self._done.is_set():
                getter = asyncio.ensure_future(self._signals.get())
                finished, _ = await asyncio.wait(watchers | {getter}, return_when=asyncio.FIRST_COMPLETED)

                if getter not in finished:
                    getter.cancel()
                if done_waiter in finished:
                    continue
                if upstream_waiter is not None and upstream_waiter in finished:
                    # The caller is going away: tear down without telling any handler
                    logger.info(f"url={self.url} protocol=sse event=upstream_cancelled")
                    self._torn_down = True
                    watchers.discard(upstream_waiter)
                    await self._release(dispatch_errors=False)
                    continue

                await self._handle(getter.result())
            return self.summary()
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            for waiter in watchers:
                waiter.cancel()

    async def _handle(self, item: ParserItem) -> None:
        if isinstance(item, Event):
            self.events_received += 1
            logger.debug(f"url={self.url} protocol=sse event=received id={item.id!r} name={item.name!r}")
            self.push(event_sample(self.tags))
            await self.dispatch(EventKind.EVENT, item)
        elif isinstance(item, StreamClosed):
            logger.debug(f"url={self.url} protocol=sse event=stream_closed")
            await self._release(dispatch_errors=True)
        else:
            self.errors_seen += 1
            await self.dispatch(EventKind.ERROR, item)

    # ==========================
    # RELEASE
    # ==========================
    def _cancel_request(self) -> None:
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()

    async def _release(self, dispatch_errors: bool) -> Optional[ReleaseError]:
        if self._release_state is not ReleaseState.OPEN:
            return None
        self._release_state = ReleaseState.CLOSING

        error: Optional[ReleaseError] = None
        try:
            # Stop the reader before closing the body it is reading from
            self._cancel_request()
            if self._reader is not None:
                await asyncio.wait([self._reader])

            try:
                await self.connection.aclose()
            except ReleaseError as e:
                error = e
                logger.warning(f"url={self.url} protocol=sse event=release_failed reason='{e}'")
                if dispatch_errors and not self.torn_down:
                    await self._registry.dispatch(EventKind.ERROR, e)
        finally:
            self._release_state = ReleaseState.CLOSED
            self._done.set()
            logger.info(
                f"url={self.url} protocol=sse event=closed "
                f"events={self.events_received} errors={self.errors_seen}"
            )
        return error
