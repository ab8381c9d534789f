"""
MiddlewareChain tests

Ordering, proceed() tracking, short-circuits, state visibility and the
helper middleware.
"""

import asyncio

import pytest

from appkit.context import ExecutionContext
from appkit.errors import MiddlewareControlError, MiddlewareTimeoutError, MultipleProceedCallsError
from appkit.middleware import (
    MiddlewareChain,
    compose_middleware,
    conditional,
    error_handler,
    timeout_middleware,
)


def make_context(tool_name="greet"):
    return ExecutionContext.create(tool_name, {"name": "World"})


def tracing(trace, label):
    async def middleware(context, proceed):
        trace.append(f"before_{label}")
        await proceed()
        trace.append(f"after_{label}")

    return middleware


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, 1, 3, 6])
async def test_onion_order(count):
    trace = []
    chain = MiddlewareChain([tracing(trace, i) for i in range(1, count + 1)])

    async def terminal():
        trace.append("terminal")

    await chain.execute(make_context(), terminal)

    expected = (
        [f"before_{i}" for i in range(1, count + 1)]
        + ["terminal"]
        + [f"after_{i}" for i in range(count, 0, -1)]
    )
    assert trace == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("position,total", [(0, 1), (0, 3), (1, 3), (2, 3)])
async def test_double_proceed_names_offending_index(position, total):
    async def passthrough(context, proceed):
        await proceed()

    async def twice(context, proceed):
        await proceed()
        await proceed()

    stack = [passthrough] * total
    stack[position] = twice
    chain = MiddlewareChain(stack)

    async def terminal():
        pass

    with pytest.raises(MultipleProceedCallsError) as info:
        await chain.execute(make_context(), terminal)

    assert isinstance(info.value, MiddlewareControlError)
    assert info.value.index == position
    assert f"index {position}" in info.value.message


@pytest.mark.asyncio
async def test_proceed_tracking_does_not_leak_between_executions():
    async def passthrough(context, proceed):
        await proceed()

    chain = MiddlewareChain([passthrough, passthrough])
    runs = []

    async def terminal():
        runs.append(1)

    await chain.execute(make_context(), terminal)
    await chain.execute(make_context(), terminal)

    assert runs == [1, 1]


@pytest.mark.asyncio
async def test_short_circuit_skips_everything_downstream():
    trace = []

    async def stop(context, proceed):
        trace.append("stop")

    chain = MiddlewareChain([tracing(trace, 1), stop, tracing(trace, 3)])

    async def terminal():
        trace.append("terminal")

    await chain.execute(make_context(), terminal)

    assert trace == ["before_1", "stop", "after_1"]


@pytest.mark.asyncio
async def test_state_written_before_proceed_is_visible_downstream():
    seen = {}

    async def writer(context, proceed):
        context.state["user"] = "u1"
        await proceed()
        context.state["after"] = True
        seen["writer_after"] = context.state["after"]

    async def reader(context, proceed):
        seen["reader"] = context.state.get("user")
        await proceed()
        seen["reader_saw_after"] = "after" in context.state

    context = make_context()

    async def terminal():
        seen["terminal"] = context.state.get("user")

    await MiddlewareChain([writer, reader]).execute(context, terminal)

    assert seen == {
        "reader": "u1",
        "terminal": "u1",
        "reader_saw_after": False,
        "writer_after": True,
    }


@pytest.mark.asyncio
async def test_errors_unwind_through_outer_middleware():
    trace = []

    async def outer(context, proceed):
        try:
            await proceed()
        except ValueError as exc:
            trace.append(f"caught {exc}")
            raise

    async def terminal():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await MiddlewareChain([outer]).execute(make_context(), terminal)

    assert trace == ["caught bad"]


@pytest.mark.asyncio
async def test_sync_middleware_is_accepted():
    trace = []

    def sync_mw(context, proceed):
        trace.append("sync")
        return proceed()

    async def terminal():
        trace.append("terminal")

    await MiddlewareChain([sync_mw]).execute(make_context(), terminal)

    assert trace == ["sync", "terminal"]


def test_use_rejects_non_callables():
    chain = MiddlewareChain()
    with pytest.raises(TypeError):
        chain.use("not a middleware")
    assert not chain.has_middleware()


def test_duplicates_are_allowed():
    async def mw(context, proceed):
        await proceed()

    chain = MiddlewareChain()
    chain.use(mw)
    chain.register(mw)
    assert len(chain) == 2


@pytest.mark.asyncio
async def test_use_during_execution_only_affects_later_calls():
    trace = []
    chain = MiddlewareChain()

    async def adds_another(context, proceed):
        chain.use(tracing(trace, "late"))
        await proceed()

    chain.use(adds_another)

    async def terminal():
        trace.append("terminal")

    await chain.execute(make_context(), terminal)
    assert trace == ["terminal"]


# --- helpers -----------------------------------------------------------------

@pytest.mark.asyncio
async def test_compose_runs_in_list_order():
    trace = []
    composed = compose_middleware([tracing(trace, "a"), tracing(trace, "b")])

    async def terminal():
        trace.append("terminal")

    await MiddlewareChain([composed]).execute(make_context(), terminal)

    assert trace == ["before_a", "before_b", "terminal", "after_b", "after_a"]


@pytest.mark.asyncio
async def test_error_handler_observes_then_reraises():
    observed = []
    handler = error_handler(lambda exc, ctx: observed.append((str(exc), ctx.tool_name)))

    async def terminal():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await MiddlewareChain([handler]).execute(make_context("calc"), terminal)

    assert observed == [("boom", "calc")]


@pytest.mark.asyncio
async def test_conditional_skips_when_predicate_false():
    trace = []
    only_greet = conditional(lambda ctx: ctx.tool_name == "greet", tracing(trace, "c"))

    async def terminal():
        trace.append("terminal")

    chain = MiddlewareChain([only_greet])
    await chain.execute(make_context("other"), terminal)
    await chain.execute(make_context("greet"), terminal)

    assert trace == ["terminal", "before_c", "terminal", "after_c"]


@pytest.mark.asyncio
async def test_timeout_raises_without_cancelling_downstream():
    finished = asyncio.Event()

    async def terminal():
        await asyncio.sleep(0.05)
        finished.set()

    chain = MiddlewareChain([timeout_middleware(0.01, index=0)])

    with pytest.raises(MiddlewareTimeoutError) as info:
        await chain.execute(make_context(), terminal)

    assert info.value.index == 0
    await asyncio.wait_for(finished.wait(), 1.0)


@pytest.mark.asyncio
async def test_timeout_passes_fast_calls_through():
    trace = []

    async def terminal():
        trace.append("terminal")

    await MiddlewareChain([timeout_middleware(1.0)]).execute(make_context(), terminal)
    assert trace == ["terminal"]


def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        timeout_middleware(0)
