# =============================================================================
# transport/mcp_server.py  -  FastMCP binding for an appkit App
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Builds a FastMCP server whose every tool call goes through the App's
#   pipeline.  FastMCP handles framing, sessions and JSON-RPC; the App
#   handles validation, middleware, plugins, events and response shaping.
#
# HOW IT WORKS (the flow):
#   1. The host calls a tool by name over MCP (e.g. "greet")
#   2. FastMCP routes the call to a PipelineTool registered below
#   3. PipelineTool.run() passes the raw arguments, plus the caller's
#      headers as metadata, to App.call_tool()
#   4. A success response becomes a ToolResult (text + structuredContent +
#      _meta); an error response becomes an ErrorToolResult, sent with
#      isError set and the error kind under _meta
#
# ALSO REGISTERED:
#   - every UI widget as a resource at ui://{app}/{key}; reading it fires the
#     on_ui_load plugin hooks
#   - a FastMCP middleware that fires on_request / on_response for every
#     MCP request
#
# LOGGING:
#   Logs go to STDERR.  With the stdio transport STDOUT carries the MCP
#   JSON-RPC stream, and anything printed there corrupts it.
# =============================================================================

import json
import logging
from typing import Any

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_headers
from fastmcp.server.middleware import Middleware, MiddlewareContext
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
from mcp.types import CallToolResult, TextContent, ToolAnnotations
from pydantic import PrivateAttr

from appkit.adapters import annotations_to_mcp
from appkit.app import App
from appkit.errors import AppError
from appkit.plugins import RequestContext, ResponseContext
from appkit.tools import ToolDef

logger = logging.getLogger(__name__)

# Headers copied into ExecutionContext.metadata.
_FORWARDED_HEADERS = ("authorization", "user-agent", "accept-language", "x-forwarded-for")


# =============================================================================
# Tools
# =============================================================================

class PipelineTool(Tool):
    """A FastMCP tool that runs through App.call_tool()."""

    _app: App = PrivateAttr()

    @classmethod
    def from_tool_def(cls, app: App, tool_def: ToolDef) -> "PipelineTool":
        meta = app.tool_meta(tool_def.name)
        hints = annotations_to_mcp(tool_def.annotations)
        tool = cls(
            name=tool_def.name,
            title=tool_def.title,
            description=tool_def.description,
            parameters=tool_def.input_schema(),
            annotations=ToolAnnotations(**hints) if hints else None,
            meta=meta.get("_meta"),
        )
        tool._app = app
        return tool

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        response = await self._app.call_tool(self.name, arguments, request_metadata())
        text = "\n".join(part["text"] for part in response["content"])
        content = [TextContent(type="text", text=text)]
        if response.get("isError"):
            return ErrorToolResult(content=content, meta=response["_meta"])
        return ToolResult(
            content=content,
            structured_content=response["structuredContent"],
            meta=response.get("_meta"),
        )


class ErrorToolResult(ToolResult):
    """A failed call: sent with isError set, keeping the error _meta."""

    def to_mcp_result(self) -> CallToolResult:
        return CallToolResult(content=self.content, isError=True, _meta=self.meta)


def request_metadata() -> dict[str, Any]:
    """Caller metadata for the current MCP request.

    Empty for stdio; for HTTP transports it carries the forwarded headers
    (authorization included, so the App can verify bearer tokens).
    """
    headers = get_http_headers(include_all=True)
    metadata: dict[str, Any] = {}
    for name in _FORWARDED_HEADERS:
        if name in headers:
            metadata[name.replace("-", "_")] = headers[name]
    if "accept_language" in metadata:
        metadata["locale"] = metadata["accept_language"].split(",")[0].strip()
    if "x_forwarded_for" in metadata:
        metadata["ip"] = metadata["x_forwarded_for"].split(",")[0].strip()
    return metadata


# =============================================================================
# Request / response hooks
# =============================================================================

class PluginHookMiddleware(Middleware):
    """Fires the App's on_request / on_response plugin hooks."""

    def __init__(self, app: App):
        self.app = app

    async def on_request(self, context: MiddlewareContext, call_next):
        method = context.method or ""
        meta = {"source": context.source, "type": context.type}
        await self.app.notify_request(RequestContext(method=method, metadata=meta))
        try:
            result = await call_next(context)
        except Exception:
            await self.app.notify_response(
                ResponseContext(method=method, metadata=meta, status_code=500)
            )
            raise
        status = 500 if isinstance(result, ErrorToolResult) else 200
        await self.app.notify_response(
            ResponseContext(method=method, metadata=meta, status_code=status, body=result)
        )
        return result


# =============================================================================
# Server
# =============================================================================

def build_server(app: App) -> FastMCP:
    """Create a FastMCP server exposing `app`'s tools and UI widgets."""
    mcp = FastMCP(app.name)
    mcp.add_middleware(PluginHookMiddleware(app))

    for tool_def in app.tools.values():
        mcp.add_tool(PipelineTool.from_tool_def(app, tool_def))

    for key in app.ui:
        _register_ui(mcp, app, key)

    logger.info(
        "Built MCP server '%s': %d tool(s), %d UI resource(s)",
        app.name, len(app.tools), len(app.ui),
    )
    return mcp


def _register_ui(mcp: FastMCP, app: App, key: str) -> None:
    ui = app.ui[key]
    resource_meta = app.ui_resource_meta(key)

    async def read_ui() -> str:
        return await app.load_ui(key)

    mcp.resource(
        app.ui_uri(key),
        name=ui.name or key,
        description=ui.description,
        mime_type=resource_meta["mimeType"],
        meta=resource_meta.get("_meta"),
    )(read_ui)


async def serve(
    app: App, transport: str = "stdio", host: str | None = None, port: int | None = None
) -> None:
    """Start the App, serve it over `transport`, then shut it down."""
    server = build_server(app)
    try:
        await app.start(transport=transport, port=port)
    except AppError as exc:
        logger.error("Startup failed: %s", exc.message)
        await _shutdown_after_failed_start(app)
        raise
    try:
        if transport == "stdio":
            await server.run_async(transport="stdio")
        else:
            kwargs = {k: v for k, v in (("host", host), ("port", port)) if v is not None}
            await server.run_async(transport=transport, **kwargs)
    finally:
        await app.shutdown()


async def _shutdown_after_failed_start(app: App) -> None:
    """Tear down the plugins that did initialize; the start error wins."""
    try:
        await app.shutdown(graceful=False)
    except AppError as exc:
        logger.error("Shutdown after failed startup: %s", exc.message)


def describe(app: App) -> str:
    """Pretty JSON of the tool list as the App's protocol sees it."""
    return json.dumps(app.describe_tools(), indent=2, default=str)
