# =============================================================================
# appkit/__init__.py
# =============================================================================
# The tool-invocation pipeline: everything between a host calling a tool and
# the response going back.
#
# CRITICAL ARCHITECTURAL RULE:
#   Nothing in this package imports FastMCP.  The transport/ package binds an
#   App to the wire; appkit only knows about ToolDefs, middleware, plugins,
#   events and the two protocol adapters.  Every piece can be exercised with
#   `await app.call_tool(...)` and no server running.
#
# WHERE THINGS LIVE:
#   app.py           create_app() and the App handle
#   orchestrator.py  one call, end to end
#   middleware.py    onion-style MiddlewareChain and helper middleware
#   plugins.py       Plugin and PluginHost (lifecycle + per-call hooks)
#   events.py        EventBus and the event payloads
#   context.py       ExecutionContext, the per-call carrier
#   tools.py         ToolDef / define_tool
#   adapters.py      MCP vs. OpenAI response shaping and metadata
#   auth.py          bearer-token verification
#   config.py        settings and validation
#   errors.py        every error kind
#   builtin/         ready-made plugins and middleware
# =============================================================================
