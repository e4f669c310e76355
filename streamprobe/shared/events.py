"""
MODULE OVERVIEW:
The per-session callback registry.

WHAT IS HAPPENING HERE:
A session only ever raises three kinds of occurrences: "open", "event" and "error".
Each kind keeps its own ordered list of handlers. Registration appends (no
de-duplication), dispatch walks the live list in registration order.

The registry itself does not care which task calls `dispatch()`. The session makes sure
that only its control loop ever does.
"""
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

Handler = Callable[..., Union[None, Awaitable[None]]]


class EventKind(str, Enum):
    OPEN = "open"
    EVENT = "event"
    ERROR = "error"


class CallbackRegistry:
    """
    Ordered handler lists keyed by event kind.
    """
    def __init__(self):
        self._handlers: Dict[EventKind, List[Handler]] = {kind: [] for kind in EventKind}

    def on(self, kind: Union[EventKind, str], handler: Handler) -> None:
        kind = EventKind(kind)
        if not callable(handler):
            raise TypeError(f"handler for {kind.value!r} must be callable, got {type(handler).__name__}")
        self._handlers[kind].append(handler)

    def handlers(self, kind: Union[EventKind, str]) -> List[Handler]:
        return list(self._handlers[EventKind(kind)])

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._handlers.values())

    async def dispatch(
        self,
        kind: EventKind,
        *args: Any,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Call every handler registered for `kind` with `args`, in order.
        Coroutine handlers are awaited before the next one runs.
        `should_stop` is checked before each handler; dispatch ends early once it returns True.
        Returns how many handlers ran. Handler exceptions propagate.
        """
        called = 0
        # Index walk so handlers appended during dispatch still run
        handlers = self._handlers[kind]
        i = 0
        while i < len(handlers):
            if should_stop is not None and should_stop():
                logger.debug(f"kind={kind.value} event=dispatch_stopped called={called}")
                break
            result = handlers[i](*args)
            if inspect.isawaitable(result):
                await result
            called += 1
            i += 1
        return called
