"""
PluginHost tests

Lifecycle ordering, fail-fast init/start, aggregated shutdown, hook
isolation and plugin config validation.
"""

import asyncio

import pytest
from pydantic import BaseModel

from appkit.context import ExecutionContext
from appkit.errors import (
    ConfigError,
    LifecycleError,
    PluginInitError,
    PluginShutdownError,
    PluginStartError,
)
from appkit.plugins import (
    Plugin,
    PluginHost,
    PluginInitContext,
    PluginShutdownContext,
    PluginStartContext,
    UILoadContext,
)


class RecordingSink:
    def __init__(self):
        self.entries = []

    def log(self, level, message, data=None):
        self.entries.append((level, message, data))


def init_ctx():
    return PluginInitContext(config={"name": "test"}, tools={})


def call_ctx():
    return ExecutionContext.create("greet", {"name": "World"})


def raiser(message):
    def hook(*args):
        raise RuntimeError(message)

    return hook


@pytest.mark.asyncio
async def test_init_runs_in_order_and_is_fail_fast():
    trace = []
    host = PluginHost([
        Plugin("first", on_init=lambda ctx: trace.append("first")),
        Plugin("broken", on_init=raiser("boom")),
        Plugin("after", on_init=lambda ctx: trace.append("after")),
    ])

    with pytest.raises(PluginInitError) as info:
        await host.init(init_ctx())

    assert "boom" in info.value.message
    assert "broken" in info.value.message
    assert trace == ["first"]
    assert not host.initialized


@pytest.mark.asyncio
async def test_async_hooks_are_awaited_sequentially():
    trace = []

    async def slow(ctx):
        await asyncio.sleep(0.01)
        trace.append("slow")

    host = PluginHost([
        Plugin("slow", on_init=slow),
        Plugin("fast", on_init=lambda ctx: trace.append("fast")),
    ])
    await host.init(init_ctx())

    assert trace == ["slow", "fast"]


@pytest.mark.asyncio
async def test_start_requires_init_and_runs_once():
    host = PluginHost([Plugin("p")])
    with pytest.raises(LifecycleError):
        await host.start(PluginStartContext())

    await host.init(init_ctx())
    await host.start(PluginStartContext())
    assert host.started

    with pytest.raises(LifecycleError):
        await host.start(PluginStartContext())
    with pytest.raises(LifecycleError):
        await host.init(init_ctx())


@pytest.mark.asyncio
async def test_start_failure_names_plugin():
    host = PluginHost([Plugin("db", on_start=raiser("no connection"))])
    await host.init(init_ctx())

    with pytest.raises(PluginStartError, match="no connection"):
        await host.start(PluginStartContext(transport="http", port=8000))


@pytest.mark.asyncio
async def test_shutdown_runs_in_reverse_and_aggregates_failures():
    trace = []
    host = PluginHost([
        Plugin("a", on_shutdown=lambda ctx: trace.append("a")),
        Plugin("b", on_shutdown=raiser("b failed")),
        Plugin("c", on_shutdown=lambda ctx: trace.append("c")),
        Plugin("d", on_shutdown=raiser("d failed")),
    ])
    await host.init(init_ctx())

    with pytest.raises(PluginShutdownError) as info:
        await host.shutdown(PluginShutdownContext())

    assert trace == ["c", "a"]
    assert [e.plugin_name for e in info.value.errors] == ["d", "b"]


@pytest.mark.asyncio
async def test_shutdown_timeout_counts_as_failure():
    async def hang(ctx):
        await asyncio.sleep(1)

    trace = []
    host = PluginHost([
        Plugin("ok", on_shutdown=lambda ctx: trace.append("ok")),
        Plugin("hang", on_shutdown=hang),
    ])
    await host.init(init_ctx())

    with pytest.raises(PluginShutdownError) as info:
        await host.shutdown(PluginShutdownContext(timeout=0.01))

    assert [e.plugin_name for e in info.value.errors] == ["hang"]
    assert trace == ["ok"]


@pytest.mark.asyncio
async def test_shutdown_skips_plugins_that_never_initialized():
    trace = []
    host = PluginHost([
        Plugin("a", on_shutdown=lambda ctx: trace.append("a")),
        Plugin("b", on_init=raiser("boom"), on_shutdown=lambda ctx: trace.append("b")),
        Plugin("c", on_shutdown=lambda ctx: trace.append("c")),
    ])
    with pytest.raises(PluginInitError):
        await host.init(init_ctx())

    await host.shutdown(PluginShutdownContext())
    assert trace == ["a"]


@pytest.mark.asyncio
async def test_before_tool_call_failure_propagates():
    trace = []
    host = PluginHost([
        Plugin("veto", before_tool_call=raiser("not allowed")),
        Plugin("later", before_tool_call=lambda ctx: trace.append("later")),
    ])

    with pytest.raises(RuntimeError, match="not allowed"):
        await host.before_tool_call(call_ctx())
    assert trace == []


@pytest.mark.asyncio
async def test_after_hooks_are_isolated_and_logged():
    trace = []
    sink = RecordingSink()
    host = PluginHost(
        [
            Plugin("broken", after_tool_call=raiser("oops"), on_ui_load=raiser("ui oops")),
            Plugin("fine", after_tool_call=lambda ctx, result: trace.append(result)),
        ],
        sink=sink,
    )

    await host.after_tool_call(call_ctx(), {"message": "hi"})
    await host.on_ui_load(UILoadContext(ui_key="main", uri="ui://test/main"))

    assert trace == [{"message": "hi"}]
    assert [entry[0] for entry in sink.entries] == ["error", "error"]
    assert "oops" in sink.entries[0][1]
    assert sink.entries[1][2] == {"plugin": "broken", "hook": "on_ui_load"}


@pytest.mark.asyncio
async def test_on_tool_error_receives_the_error():
    seen = []
    host = PluginHost([Plugin("obs", on_tool_error=lambda ctx, err: seen.append(str(err)))])

    await host.on_tool_error(call_ctx(), ValueError("bad"))
    assert seen == ["bad"]


def test_duplicate_plugin_names_are_rejected():
    with pytest.raises(ConfigError, match="Duplicate"):
        PluginHost([Plugin("same"), Plugin("same")])


def test_non_plugins_are_rejected():
    with pytest.raises(ConfigError):
        PluginHost([{"name": "dict-plugin"}])


def test_plugin_requires_a_name():
    with pytest.raises(ConfigError):
        Plugin("")


def test_config_schema_validates_and_parses():
    class CacheConfig(BaseModel):
        ttl: int = 60

    plugin = Plugin("cache", config={"ttl": "30"}, config_schema=CacheConfig)
    assert plugin.config.ttl == 30

    with pytest.raises(ConfigError, match="cache"):
        Plugin("cache", config={"ttl": "soon"}, config_schema=CacheConfig)


@pytest.mark.asyncio
async def test_registration_closed_after_init():
    host = PluginHost([Plugin("a")])
    await host.init(init_ctx())
    with pytest.raises(LifecycleError):
        host.register_all([Plugin("b")])
    assert [p.name for p in host.plugins] == ["a"]
    assert host.get("a") is not None
    assert host.get("missing") is None
