# =============================================================================
# appkit/builtin/logging_plugin.py  -  Logging plugin
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   A plugin that writes the app's lifecycle and every tool call to the
#   "appkit.plugin.logging" logger, using the colour helpers from
#   appkit.logger:
#
#     [INFO]  App initialized: demo v1.0.0 (3 tools)
#     [INFO]  Server started (stdio)
#     CYAN    greet called with: {"name":"World"}
#     GREEN     ← greet response: {"message":"Hello, World"}
#     RED       ✗ greet failed: ...
#
#   Its level ("debug" | "info" | "warn" | "error") is validated by a
#   pydantic model, so a typo fails at construction.
# =============================================================================

import logging
from typing import Any, Literal

from pydantic import BaseModel

from appkit.logger import log_failure, log_request, log_response, log_status, to_level
from appkit.plugins import Plugin, PluginInitContext, PluginShutdownContext, PluginStartContext

logger = logging.getLogger("appkit.plugin.logging")


class LoggingPluginConfig(BaseModel):
    level: Literal["debug", "info", "warn", "error"] = "info"


def create_logging_plugin(level: str = "info") -> Plugin:
    """Build a logging plugin that logs at `level` and above."""
    plugin = Plugin(
        name="logging",
        version="1.0.0",
        config={"level": level},
        config_schema=LoggingPluginConfig,
    )
    threshold = to_level(plugin.config.level)

    def enabled(at: int) -> bool:
        return at >= threshold

    def on_init(context: PluginInitContext) -> None:
        if enabled(logging.INFO):
            config = context.config
            logger.info(
                "App initialized: %s v%s (%d tools)",
                config.name, config.version, len(context.tools),
            )

    def on_start(context: PluginStartContext) -> None:
        if not enabled(logging.INFO):
            return
        if context.transport == "http" and context.port:
            logger.info("Server started on port %s (HTTP)", context.port)
        else:
            logger.info("Server started (%s)", context.transport)

    def on_shutdown(context: PluginShutdownContext) -> None:
        if enabled(logging.INFO):
            logger.info("Server stopping (graceful=%s)", context.graceful)

    def before_tool_call(context: Any) -> None:
        if enabled(logging.INFO):
            log_request(context.tool_name, context.input, logger)
            locale = context.metadata.get("locale")
            if locale:
                log_status(f"locale: {locale}", logger)

    def after_tool_call(context: Any, result: Any) -> None:
        if enabled(logging.INFO):
            log_response(context.tool_name, result, logger)

    def on_tool_error(context: Any, error: BaseException) -> None:
        if enabled(logging.ERROR):
            log_failure(context.tool_name, error, logger)
            if enabled(logging.DEBUG) and error.__cause__ is not None:
                logger.debug("caused by", exc_info=error.__cause__)

    plugin.on_init = on_init
    plugin.on_start = on_start
    plugin.on_shutdown = on_shutdown
    plugin.before_tool_call = before_tool_call
    plugin.after_tool_call = after_tool_call
    plugin.on_tool_error = on_tool_error
    return plugin
