# =============================================================================
# main.py  -  Entry point: a small demo app served over MCP
# =============================================================================
#
# HOW TO RUN:
#   python main.py                    # stdio (what Claude Desktop launches)
#   python main.py --http --port 8000 # streamable HTTP
#   python main.py --describe         # print the tool list and exit
#
# WHAT HAPPENS:
#   1. Loads .env (APPKIT_* settings, see appkit/config.py)
#   2. Configures logging to STDERR
#   3. Builds the demo app: one tool, the logging plugin, a timing
#      middleware and a rate limit
#   4. Serves it with FastMCP until the host disconnects, then runs the
#      plugins' shutdown hooks
# =============================================================================

import argparse
import asyncio
import logging

from dotenv import load_dotenv

# Load environment variables from .env before any settings are read.
load_dotenv()

from pydantic import BaseModel, Field

from appkit.app import App, create_app
from appkit.builtin.logging_plugin import create_logging_plugin
from appkit.builtin.rate_limit import rate_limit_middleware
from appkit.config import GlobalConfig
from appkit.events import TOOL_ERROR
from appkit.logger import configure_logging
from appkit.tools import ToolAnnotations, define_tool
from transport.mcp_server import describe, serve

logger = logging.getLogger("appkit.demo")


class GreetInput(BaseModel):
    name: str = Field(description="Who to greet")


class GreetOutput(BaseModel):
    message: str


@define_tool(
    input_model=GreetInput,
    output_model=GreetOutput,
    title="Greet",
    annotations=ToolAnnotations(read_only_hint=True, idempotent_hint=True),
)
async def greet(input: GreetInput, context) -> dict:
    """Greet someone by name."""
    user = context.state.get("user_id")
    suffix = f" (from {user})" if user else ""
    return {"message": f"Hello, {input.name}{suffix}", "_text": f"Greeted {input.name}"}


async def timing(context, proceed):
    loop = asyncio.get_running_loop()
    started = loop.time()
    await proceed()
    logger.debug("%s took %.1fms", context.tool_name, (loop.time() - started) * 1000)


def build_app(config: GlobalConfig) -> App:
    app = create_app(
        "appkit-demo",
        "1.0.0",
        tools=[greet],
        plugins=[create_logging_plugin(config.debug.level)],
        config=config,
    )
    app.use(timing)
    app.use(rate_limit_middleware(max_requests=60, window_seconds=60))
    app.on(TOOL_ERROR, lambda event: logger.warning("%s failed: %s", event.tool_name, event.error))
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the appkit demo over MCP")
    parser.add_argument("--http", action="store_true", help="serve streamable HTTP instead of stdio")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--describe", action="store_true", help="print the tool list and exit")
    args = parser.parse_args()

    config = GlobalConfig.from_env()
    configure_logging(config.debug.level)
    app = build_app(config)

    if args.describe:
        print(describe(app))
        return

    if args.http:
        asyncio.run(serve(app, transport="http", host=args.host, port=args.port))
    else:
        asyncio.run(serve(app))


# =============================================================================
# Script entry point
# =============================================================================
if __name__ == "__main__":
    main()
