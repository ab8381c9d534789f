"""
FastMCP binding tests

Drives the built server in-process with fastmcp.Client.
"""

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from appkit.app import create_app
from appkit.errors import PluginStartError
from appkit.plugins import Plugin
from appkit.tools import define_tool
from appkit.ui import UIDef
from transport.mcp_server import build_server, serve


@pytest.fixture
def hook_trace():
    return []


@pytest.fixture
def served_app(greet_tool, hook_trace):
    return create_app(
        "served",
        "1.0.0",
        tools=[greet_tool],
        ui={"card": UIDef(html="<div>card</div>", description="Greeting card")},
        plugins=[
            Plugin(
                "trace",
                on_request=lambda ctx: hook_trace.append(("request", ctx.method)),
                on_response=lambda ctx: hook_trace.append(("response", ctx.method)),
                on_ui_load=lambda ctx: hook_trace.append(("ui", ctx.uri)),
            )
        ],
    )


@pytest.mark.asyncio
async def test_tools_are_listed_with_pydantic_schema(served_app):
    async with Client(build_server(served_app)) as client:
        tools = await client.list_tools()

    greet = next(t for t in tools if t.name == "greet")
    assert greet.inputSchema["properties"]["name"]["type"] == "string"
    assert greet.description == "Greet someone by name."


@pytest.mark.asyncio
async def test_tool_call_runs_through_pipeline(served_app, greet_calls):
    async with Client(build_server(served_app)) as client:
        result = await client.call_tool("greet", {"name": "World"})

    assert result.structured_content == {"message": "Hello, World"}
    assert greet_calls == ["World"]


@pytest.mark.asyncio
async def test_error_response_is_raised_as_tool_error(served_app):
    async with Client(build_server(served_app)) as client:
        with pytest.raises(ToolError, match=r"(?i)input"):
            await client.call_tool("greet", {"name": 42})


@pytest.mark.asyncio
async def test_request_and_ui_hooks_fire(served_app, hook_trace):
    async with Client(build_server(served_app)) as client:
        await client.call_tool("greet", {"name": "World"})
        contents = await client.read_resource("ui://served/card")

    assert contents[0].text == "<div>card</div>"
    assert ("request", "tools/call") in hook_trace
    assert ("response", "tools/call") in hook_trace
    assert ("ui", "ui://served/card") in hook_trace


@pytest.mark.asyncio
async def test_error_result_keeps_kind_in_meta(served_app):
    async with Client(build_server(served_app)) as client:
        result = await client.call_tool("greet", {"name": 42}, raise_on_error=False)

    assert result.is_error
    assert result.meta["error"]["kind"] == "INPUT_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_success_result_keeps_handler_meta():
    @define_tool()
    def rows(input):
        """List rows."""
        return {"n": 2, "_meta": {"rows": [1, 2]}}

    app = create_app("rows", "1.0.0", tools=[rows])
    async with Client(build_server(app)) as client:
        result = await client.call_tool("rows", {})

    assert result.structured_content == {"n": 2}
    assert result.meta == {"rows": [1, 2]}


@pytest.mark.asyncio
async def test_serve_tears_down_initialized_plugins_when_start_fails():
    trace = []

    def refuse(context):
        raise RuntimeError("port busy")

    app = create_app("t", "1", plugins=[
        Plugin("db", on_init=lambda ctx: trace.append("init"),
               on_shutdown=lambda ctx: trace.append(("shutdown", ctx.graceful))),
        Plugin("listener", on_start=refuse),
    ])

    with pytest.raises(PluginStartError, match="port busy"):
        await serve(app)

    assert trace == ["init", ("shutdown", False)]
