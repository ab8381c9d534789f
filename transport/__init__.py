# =============================================================================
# transport/__init__.py
# =============================================================================
# Binds an appkit App to the MCP wire using FastMCP.
#
# ARCHITECTURAL ROLE:
#   transport/ is the translation layer between FastMCP and the pipeline.
#   It registers each ToolDef as a FastMCP tool whose run() hands the raw
#   arguments to App.call_tool(), exposes UI widgets as resources, and turns
#   FastMCP request traffic into on_request / on_response plugin hooks.
#
# WHAT IT DOES NOT DO:
#   - No validation, no error classification (the orchestrator does both)
#   - No plugin or middleware logic of its own
# =============================================================================
