# =============================================================================
# appkit/orchestrator.py  -  Invocation Orchestrator (one tool call, end to end)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Drives a single tool call through every stage and always hands back a
#   wire-shaped response, never an exception:
#
#     1. look the tool up; verify the bearer token when auth is configured
#     2. validate the raw input            (failure: error response, no events)
#     3. build the ExecutionContext
#     4. emit tool:called
#     5. before_tool_call hooks            (a failure vetoes the call)
#     6. middleware chain; the terminal step runs the handler, then
#        validates its output
#     7. chain returned without a completed terminal step: use
#        state["response"] if a middleware left one, else fail with
#        ShortCircuitWithoutResultError
#     8. after_tool_call / on_tool_error   (isolated, see plugins.py)
#     9. emit tool:success / tool:error with the duration
#    10. shape the outcome with the protocol adapter
#
# ERROR CLASSIFICATION:
#   Handler exceptions become ToolExecutionError inside the terminal step.
#   Anything else that escapes the chain without being an AppError came from
#   user middleware and becomes MiddlewareError.  AppErrors pass through
#   with their own kind.
# =============================================================================

import logging
import time
from typing import Any, Mapping

from appkit.adapters import ProtocolAdapter
from appkit.auth import AUTH_METADATA_KEY, TokenVerifier, extract_bearer_token
from appkit.context import RESPONSE_KEY, ExecutionContext
from appkit.errors import (
    AppError,
    AuthError,
    MiddlewareError,
    ShortCircuitWithoutResultError,
    ToolExecutionError,
    ToolNotFoundError,
    wrap_error,
)
from appkit.events import TOOL_CALLED, TOOL_ERROR, TOOL_SUCCESS, EventBus
from appkit.events import ToolCalledEvent, ToolErrorEvent, ToolSuccessEvent
from appkit.middleware import MiddlewareChain, maybe_await
from appkit.plugins import PluginHost
from appkit.tools import ToolDef

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs tool calls against the app's registry, chain, plugins and bus."""

    def __init__(
        self,
        tools: Mapping[str, ToolDef],
        chain: MiddlewareChain,
        plugins: PluginHost,
        events: EventBus,
        adapter: ProtocolAdapter,
        verifier: TokenVerifier | None = None,
    ):
        self.tools = tools
        self.chain = chain
        self.plugins = plugins
        self.events = events
        self.adapter = adapter
        self.verifier = verifier

    async def invoke(
        self,
        tool_name: str,
        raw_input: Any = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run `tool_name` with `raw_input` and return the wire response."""
        tool = self.tools.get(tool_name)
        if tool is None:
            logger.warning("Call to unknown tool '%s'", tool_name)
            return self.adapter.shape_error(ToolNotFoundError(tool_name))

        metadata = dict(metadata or {})
        if self.verifier is not None:
            try:
                metadata[AUTH_METADATA_KEY] = await self._authenticate(metadata)
            except AuthError as exc:
                logger.info("Rejected call to '%s': %s", tool_name, exc.message)
                return self.adapter.shape_error(exc)

        try:
            validated = tool.validate_input(raw_input)
        except AppError as exc:
            logger.debug("Invalid input for '%s': %s", tool_name, exc.message)
            return self.adapter.shape_error(exc)

        context = ExecutionContext.create(tool_name, validated, metadata)
        started = time.perf_counter()
        await self.events.emit(
            TOOL_CALLED, ToolCalledEvent(tool_name, validated, context.metadata)
        )

        try:
            output = await self._run(tool, context)
        except AppError as error:
            await self.plugins.on_tool_error(context, error)
            await self.events.emit(
                TOOL_ERROR, ToolErrorEvent(tool_name, error, _elapsed_ms(started))
            )
            return self.adapter.shape_error(error, context)

        await self.plugins.after_tool_call(context, output)
        await self.events.emit(
            TOOL_SUCCESS, ToolSuccessEvent(tool_name, output, _elapsed_ms(started))
        )
        return self.adapter.shape_success(output, context)

    async def _authenticate(self, metadata: Mapping[str, Any]) -> Any:
        token = extract_bearer_token(metadata)
        if token is None:
            raise AuthError("Missing bearer token")
        return await self.verifier.verify(token)

    async def _run(self, tool: ToolDef, context: ExecutionContext) -> Any:
        """Steps 5-7.  Raises AppError on any failure."""
        try:
            await self.plugins.before_tool_call(context)
        except AppError:
            raise
        except Exception as exc:
            raise wrap_error(exc, ToolExecutionError) from exc

        completed = False
        output: Any = None

        async def terminal() -> None:
            nonlocal completed, output
            try:
                result = await maybe_await(tool.call(context.input, context))
            except AppError:
                raise
            except Exception as exc:
                logger.debug("Tool '%s' raised %s", tool.name, type(exc).__name__)
                raise ToolExecutionError(str(exc) or type(exc).__name__) from exc
            output = tool.validate_output(result)
            completed = True

        try:
            await self.chain.execute(context, terminal)
        except AppError:
            raise
        except Exception as exc:
            raise wrap_error(exc, MiddlewareError) from exc

        if completed:
            return output
        if RESPONSE_KEY in context.state:
            return context.state[RESPONSE_KEY]
        raise ShortCircuitWithoutResultError(tool.name, RESPONSE_KEY)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
