# =============================================================================
# appkit/events.py  -  Event Bus (typed publish / subscribe)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Lets application code observe the app's lifecycle and every tool call's
#   outcome without touching the pipeline.
#
#       unsubscribe = app.on(TOOL_SUCCESS, lambda e: print(e.duration_ms))
#
# DELIVERY RULES:
#   - Listeners for the event run first, in subscription order, then the
#     on_any() listeners, in subscription order.  Each is awaited before the
#     next one starts.
#   - A listener that raises is logged and skipped over.  emit() never
#     raises because of a listener.
#   - once() listeners are removed before their first delivery.
#   - Each event name accepts at most `max_listeners` listeners (0 = no
#     limit); one more raises MaxListenersExceededError.
# =============================================================================

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from appkit.errors import MaxListenersExceededError
from appkit.logger import LoggingSink, LogSink
from appkit.middleware import maybe_await

logger = logging.getLogger(__name__)

# --- Event names -------------------------------------------------------------
APP_INIT = "app:init"
APP_START = "app:start"
APP_SHUTDOWN = "app:shutdown"
TOOL_CALLED = "tool:called"
TOOL_SUCCESS = "tool:success"
TOOL_ERROR = "tool:error"
ERROR = "error"

DEFAULT_MAX_LISTENERS = 50


# --- Payloads ----------------------------------------------------------------

@dataclass(frozen=True)
class AppInitEvent:
    config: Any


@dataclass(frozen=True)
class AppStartEvent:
    transport: str
    port: int | None = None


@dataclass(frozen=True)
class AppShutdownEvent:
    graceful: bool


@dataclass(frozen=True)
class ToolCalledEvent:
    tool_name: str
    input: Any
    metadata: Mapping[str, Any]


@dataclass(frozen=True)
class ToolSuccessEvent:
    tool_name: str
    result: Any
    duration_ms: float


@dataclass(frozen=True)
class ToolErrorEvent:
    tool_name: str
    error: BaseException
    duration_ms: float


@dataclass(frozen=True)
class ErrorEvent:
    error: BaseException
    source: str


EventHandler = Callable[[Any], Any]
AnyEventHandler = Callable[[str, Any], Any]
Unsubscribe = Callable[[], None]


@dataclass
class _Listener:
    handler: EventHandler
    once: bool


@dataclass(frozen=True)
class ListenerInfo:
    event: str
    once: bool
    handler_name: str | None


@dataclass(frozen=True)
class EventBusStats:
    total_listeners: int
    listeners_by_event: dict[str, int]
    wildcard_listeners: int
    listeners: list[ListenerInfo] = field(default_factory=list)


class EventBus:
    """Process-wide subscriber registry owned by one App."""

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS, sink: LogSink | None = None):
        if max_listeners < 0:
            raise ValueError("max_listeners must be >= 0")
        self.max_listeners = max_listeners
        self._listeners: dict[str, list[_Listener]] = {}
        self._wildcard: list[AnyEventHandler] = []
        self._sink = sink or LoggingSink(logger)

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        return self._add(event, handler, once=False)

    def once(self, event: str, handler: EventHandler) -> Unsubscribe:
        return self._add(event, handler, once=True)

    def on_any(self, handler: AnyEventHandler) -> Unsubscribe:
        if not callable(handler):
            raise TypeError("Event handler must be callable")
        self._wildcard.append(handler)

        def unsubscribe() -> None:
            if handler in self._wildcard:
                self._wildcard.remove(handler)

        return unsubscribe

    async def emit(self, event: str, payload: Any = None) -> None:
        """Deliver `payload` to every current listener of `event`."""
        listeners = list(self._listeners.get(event, ()))
        wildcard = list(self._wildcard)

        for listener in listeners:
            if listener.once:
                self._remove(event, listener)

        for listener in listeners:
            try:
                await maybe_await(listener.handler(payload))
            except Exception as exc:
                self._report(event, listener.handler, exc)

        for handler in wildcard:
            try:
                await maybe_await(handler(event, payload))
            except Exception as exc:
                self._report(event, handler, exc)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is not None:
            self._listeners.pop(event, None)
        else:
            self._listeners.clear()
            self._wildcard.clear()

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def stats(self) -> EventBusStats:
        by_event = {event: len(items) for event, items in self._listeners.items()}
        infos = [
            ListenerInfo(event, item.once, getattr(item.handler, "__name__", None))
            for event, items in self._listeners.items()
            for item in items
        ]
        return EventBusStats(
            total_listeners=sum(by_event.values()),
            listeners_by_event=by_event,
            wildcard_listeners=len(self._wildcard),
            listeners=infos,
        )

    # --- internals -----------------------------------------------------------

    def _add(self, event: str, handler: EventHandler, once: bool) -> Unsubscribe:
        if not callable(handler):
            raise TypeError("Event handler must be callable")
        if self.max_listeners and self.listener_count(event) >= self.max_listeners:
            raise MaxListenersExceededError(event, self.max_listeners)

        listener = _Listener(handler, once)
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self._remove(event, listener)

    def _remove(self, event: str, listener: _Listener) -> None:
        items = self._listeners.get(event)
        if not items:
            return
        for i, item in enumerate(items):
            if item is listener:
                del items[i]
                break
        if not items:
            del self._listeners[event]

    def _report(self, event: str, handler: Callable[..., Any], exc: BaseException) -> None:
        self._sink.log(
            "error",
            f"Event handler error for '{event}': {exc}",
            {"handler": getattr(handler, "__name__", repr(handler))},
        )
