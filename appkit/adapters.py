# =============================================================================
# appkit/adapters.py  -  Protocol adapters (MCP Apps vs. ChatGPT Apps)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Pure data mapping from the pipeline's outcome to what a given host
#   expects on the wire.  There are exactly two adapters:
#
#     McpAdapter     MCP Apps hosts (Claude Desktop, ...): camelCase keys,
#                    `_meta.ui.*` namespace, mime "text/html;profile=mcp-app"
#     OpenAIAdapter  ChatGPT Apps: `openai/*` prefixed keys, snake_case CSP,
#                    mime "text/html+skybridge"
#
#   create_adapter(protocol) picks one; the App resolves it once at
#   construction.
#
# RESPONSE SHAPES:
#   success  {"content": [{"type": "text", "text": ...}],
#             "structuredContent": {...}, "_meta": {...}?}
#   error    {"content": [{"type": "text", "text": message}],
#             "isError": True, "_meta": {<error key>: {"kind", "message", ...}}}
#
#   Non-dict results are wrapped as {"result": value} in structuredContent,
#   since MCP requires an object there.
# =============================================================================

import json
from typing import Any, Literal

from pydantic import BaseModel

from appkit.errors import AppError, wrap_error
from appkit.tools import ToolAnnotations, ToolDef, Visibility
from appkit.ui import MCP_UI_MIME_TYPE, OPENAI_UI_MIME_TYPE, CSPConfig, UIDef

Protocol = Literal["mcp", "openai"]
PROTOCOLS: tuple[str, ...] = ("mcp", "openai")


# -----------------------------------------------------------------------------
# Visibility and CSP mapping
# -----------------------------------------------------------------------------

def visibility_to_mcp(visibility: Visibility | None) -> dict[str, Any]:
    if visibility == "model":
        return {"readOnlyHint": True}
    if visibility == "app":
        return {"readOnlyHint": False, "appOnly": True}
    return {"readOnlyHint": False}


def visibility_to_openai(visibility: Visibility | None) -> dict[str, bool]:
    if visibility == "model":
        return {"invokableByAI": True, "invokableByApp": False}
    if visibility == "app":
        return {"invokableByAI": False, "invokableByApp": True}
    return {"invokableByAI": True, "invokableByApp": True}


def mcp_visibility_list(visibility: Visibility | None) -> list[str]:
    if visibility == "model":
        return ["model"]
    if visibility == "app":
        return ["app"]
    return ["model", "app"]


def mcp_csp(csp: CSPConfig) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    if csp.connect_domains:
        result["connectDomains"] = list(csp.connect_domains)
    if csp.resource_domains:
        result["resourceDomains"] = list(csp.resource_domains)
    return result


def openai_csp(csp: CSPConfig) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for key in ("connect_domains", "resource_domains", "redirect_domains", "frame_domains"):
        domains = getattr(csp, key)
        if domains:
            result[key] = list(domains)
    return result


def annotations_to_mcp(annotations: ToolAnnotations | None) -> dict[str, bool] | None:
    if annotations is None:
        return None
    result = {
        "readOnlyHint": annotations.read_only_hint,
        "destructiveHint": annotations.destructive_hint,
        "openWorldHint": annotations.open_world_hint,
        "idempotentHint": annotations.idempotent_hint,
    }
    result = {k: v for k, v in result.items() if v is not None}
    return result or None


# -----------------------------------------------------------------------------
# Adapters
# -----------------------------------------------------------------------------

class ProtocolAdapter:
    """Shared response shaping; subclasses fill in the protocol specifics."""

    protocol: str = ""
    ui_mime_type: str = ""
    error_meta_key: str = "error"

    def shape_success(self, output: Any, context: Any = None) -> dict[str, Any]:
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        meta: dict[str, Any] | None = None
        text: str | None = None
        structured = output
        if isinstance(output, dict):
            meta = output.get("_meta")
            text = output.get("_text")
            structured = {k: v for k, v in output.items() if k not in ("_meta", "_text")}
        if not isinstance(structured, dict):
            structured = {"result": structured}

        response: dict[str, Any] = {
            "content": [{"type": "text", "text": text if text is not None else _dumps(structured)}],
            "structuredContent": structured,
        }
        if meta:
            response["_meta"] = meta
        return response

    def shape_error(self, error: BaseException, context: Any = None) -> dict[str, Any]:
        app_error: AppError = wrap_error(error)
        payload = app_error.to_dict()
        if context is not None and getattr(context, "tool_name", None):
            payload["tool"] = context.tool_name
        return {
            "content": [{"type": "text", "text": app_error.message}],
            "isError": True,
            "_meta": {self.error_meta_key: payload},
        }

    def build_tool_meta(
        self, tool: ToolDef, server_name: str, ui_uri: str | None = None
    ) -> dict[str, Any]:
        raise NotImplementedError

    def build_ui_resource_meta(self, ui: UIDef) -> dict[str, Any]:
        raise NotImplementedError

    def describe_tool(self, tool: ToolDef) -> dict[str, Any]:
        raise NotImplementedError


class McpAdapter(ProtocolAdapter):
    protocol = "mcp"
    ui_mime_type = MCP_UI_MIME_TYPE

    def build_tool_meta(
        self, tool: ToolDef, server_name: str, ui_uri: str | None = None
    ) -> dict[str, Any]:
        ui_meta: dict[str, Any] = {"visibility": mcp_visibility_list(tool.visibility)}
        if ui_uri:
            ui_meta["resourceUri"] = ui_uri
        result: dict[str, Any] = {"_meta": {"ui": ui_meta}}
        annotations = annotations_to_mcp(tool.annotations)
        if annotations:
            result["annotations"] = annotations
        return result

    def build_ui_resource_meta(self, ui: UIDef) -> dict[str, Any]:
        ui_meta: dict[str, Any] = {}
        if ui.csp:
            csp = mcp_csp(ui.csp)
            if csp:
                ui_meta["csp"] = csp
        if ui.prefers_border is not None:
            ui_meta["prefersBorder"] = ui.prefers_border
        if ui.domain:
            ui_meta["domain"] = ui.domain
        result: dict[str, Any] = {"mimeType": self.ui_mime_type}
        if ui_meta:
            result["_meta"] = {"ui": ui_meta}
        return result

    def describe_tool(self, tool: ToolDef) -> dict[str, Any]:
        annotations: dict[str, Any] = visibility_to_mcp(tool.visibility)
        if tool.ui:
            annotations["ui"] = tool.ui
        if tool.title:
            annotations["title"] = tool.title
        return {
            "name": tool.name,
            "description": tool.description,
            "inputSchema": tool.input_schema(),
            "annotations": annotations,
        }


class OpenAIAdapter(ProtocolAdapter):
    protocol = "openai"
    ui_mime_type = OPENAI_UI_MIME_TYPE
    error_meta_key = "openai/error"

    def build_tool_meta(
        self, tool: ToolDef, server_name: str, ui_uri: str | None = None
    ) -> dict[str, Any]:
        meta: dict[str, Any] = {
            f"openai/{k}": v for k, v in visibility_to_openai(tool.visibility).items()
        }
        meta["openai/widgetAccessible"] = (
            tool.widget_accessible
            if tool.widget_accessible is not None
            else tool.visibility in ("app", "both")
        )
        if tool.ui:
            meta["openai/outputTemplate"] = ui_uri or f"ui://{server_name}/{tool.ui}"
        if tool.invoking_message:
            meta["openai/toolInvocation/invoking"] = tool.invoking_message
        if tool.invoked_message:
            meta["openai/toolInvocation/invoked"] = tool.invoked_message
        return {"_meta": meta}

    def build_ui_resource_meta(self, ui: UIDef) -> dict[str, Any]:
        meta: dict[str, Any] = {}
        if ui.csp:
            csp = openai_csp(ui.csp)
            if csp:
                meta["openai/widgetCSP"] = csp
        if ui.prefers_border is not None:
            meta["openai/widgetPrefersBorder"] = ui.prefers_border
        if ui.domain:
            meta["openai/widgetDomain"] = ui.domain
        result: dict[str, Any] = {"mimeType": self.ui_mime_type}
        if meta:
            result["_meta"] = meta
        return result

    def describe_tool(self, tool: ToolDef) -> dict[str, Any]:
        function: dict[str, Any] = {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_schema(),
            **visibility_to_openai(tool.visibility),
        }
        if tool.ui or tool.output_model:
            output_schema: dict[str, Any] = {}
            if tool.ui:
                output_schema["ui"] = tool.ui
            if tool.output_model:
                output_schema["schema"] = tool.output_schema()
            function["output_schema"] = output_schema
        if tool.invoking_message:
            function["invokingMessage"] = tool.invoking_message
        if tool.invoked_message:
            function["invokedMessage"] = tool.invoked_message
        return {"type": "function", "function": function}


def create_adapter(protocol: str = "mcp") -> ProtocolAdapter:
    """Adapter for `protocol` ("mcp" or "openai")."""
    if protocol == "openai":
        return OpenAIAdapter()
    if protocol == "mcp":
        return McpAdapter()
    raise ValueError(f"Unknown protocol: {protocol!r} (expected one of {PROTOCOLS})")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def tool_metadata(
    tool: ToolDef, protocol: str, server_name: str, ui_uri: str | None = None
) -> dict[str, Any]:
    """Tool metadata document for `protocol` (see build_tool_meta)."""
    return create_adapter(protocol).build_tool_meta(tool, server_name, ui_uri)
