"""
EventBus tests
"""

import pytest

from appkit.errors import MaxListenersExceededError
from appkit.events import TOOL_CALLED, TOOL_SUCCESS, EventBus, ToolSuccessEvent


class RecordingSink:
    def __init__(self):
        self.entries = []

    def log(self, level, message, data=None):
        self.entries.append((level, message, data))


@pytest.mark.asyncio
async def test_listeners_run_in_subscription_order_then_wildcards():
    trace = []
    bus = EventBus()
    bus.on_any(lambda name, payload: trace.append(f"any:{name}"))
    bus.on(TOOL_CALLED, lambda payload: trace.append("first"))

    async def second(payload):
        trace.append("second")

    bus.on(TOOL_CALLED, second)

    await bus.emit(TOOL_CALLED, None)

    assert trace == ["first", "second", "any:tool:called"]


@pytest.mark.asyncio
async def test_once_delivers_a_single_time():
    seen = []
    bus = EventBus()
    bus.once(TOOL_SUCCESS, seen.append)

    event = ToolSuccessEvent("greet", {"message": "hi"}, 1.5)
    await bus.emit(TOOL_SUCCESS, event)
    await bus.emit(TOOL_SUCCESS, event)

    assert seen == [event]
    assert bus.listener_count(TOOL_SUCCESS) == 0


@pytest.mark.asyncio
async def test_once_is_removed_before_reentrant_emit():
    seen = []
    bus = EventBus()

    async def handler(payload):
        seen.append(payload)
        if payload == 1:
            await bus.emit("custom", 2)

    bus.once("custom", handler)
    await bus.emit("custom", 1)

    assert seen == [1]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    seen = []
    bus = EventBus()
    unsubscribe = bus.on("custom", seen.append)
    unsubscribe_any = bus.on_any(lambda name, payload: seen.append(name))

    unsubscribe()
    unsubscribe_any()
    await bus.emit("custom", 1)

    assert seen == []


@pytest.mark.asyncio
async def test_failing_listener_is_logged_and_skipped():
    seen = []
    sink = RecordingSink()
    bus = EventBus(sink=sink)

    def broken(payload):
        raise RuntimeError("listener broke")

    bus.on("custom", broken)
    bus.on("custom", seen.append)

    await bus.emit("custom", "payload")

    assert seen == ["payload"]
    assert sink.entries[0][0] == "error"
    assert "listener broke" in sink.entries[0][1]
    assert sink.entries[0][2] == {"handler": "broken"}


def test_max_listeners_is_enforced_per_event():
    bus = EventBus(max_listeners=2)
    bus.on("a", print)
    bus.on("a", print)
    bus.on("b", print)

    with pytest.raises(MaxListenersExceededError):
        bus.on("a", print)


def test_zero_disables_the_limit():
    bus = EventBus(max_listeners=0)
    for _ in range(100):
        bus.on("a", print)
    assert bus.listener_count("a") == 100


def test_stats_and_remove_all():
    bus = EventBus()

    def on_called(payload):
        pass

    bus.on(TOOL_CALLED, on_called)
    bus.once(TOOL_SUCCESS, print)
    bus.on_any(lambda name, payload: None)

    stats = bus.stats()
    assert stats.total_listeners == 2
    assert stats.listeners_by_event == {TOOL_CALLED: 1, TOOL_SUCCESS: 1}
    assert stats.wildcard_listeners == 1
    assert {(i.event, i.once, i.handler_name) for i in stats.listeners} == {
        (TOOL_CALLED, False, "on_called"),
        (TOOL_SUCCESS, True, "print"),
    }

    bus.remove_all_listeners(TOOL_CALLED)
    assert bus.listener_count(TOOL_CALLED) == 0
    assert bus.listener_count(TOOL_SUCCESS) == 1

    bus.remove_all_listeners()
    assert bus.stats().total_listeners == 0
    assert bus.stats().wildcard_listeners == 0


def test_handlers_must_be_callable():
    bus = EventBus()
    with pytest.raises(TypeError):
        bus.on("a", "nope")
