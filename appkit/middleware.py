# =============================================================================
# appkit/middleware.py  -  Middleware Chain (onion-style dispatch)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Runs user middleware around a terminal step (the tool handler).
#
#   A middleware is `async def mw(context, proceed)`.  Code before
#   `await proceed()` runs on the way in (registration order), code after it
#   runs on the way out (reverse order):
#
#       mw_0 before -> mw_1 before -> terminal -> mw_1 after -> mw_0 after
#
#   Returning without calling proceed() short-circuits: nothing further in
#   runs, and the chain itself raises nothing.  The orchestrator decides
#   what a short-circuit means (see orchestrator.py).
#
# PROCEED TRACKING:
#   Every middleware gets its own `proceed` closure, built fresh inside each
#   execute() call.  Calling it twice raises MultipleProceedCallsError with
#   that middleware's index.  Nothing is stored on the chain between
#   executions.
#
# HELPERS:
#   compose_middleware, error_handler, conditional, timeout_middleware.
# =============================================================================

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from appkit.context import ExecutionContext
from appkit.errors import MiddlewareTimeoutError, MultipleProceedCallsError

logger = logging.getLogger(__name__)

Proceed = Callable[[], Awaitable[None]]
Middleware = Callable[[ExecutionContext, Proceed], Awaitable[None] | None]
Terminal = Callable[[], Awaitable[None]]


async def maybe_await(value: Any) -> Any:
    """Await `value` if it is awaitable, else return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class MiddlewareChain:
    """Ordered list of middleware, executed once per tool invocation."""

    def __init__(self, middleware: list[Middleware] | None = None):
        self._middleware: list[Middleware] = []
        for mw in middleware or []:
            self.use(mw)

    def use(self, middleware: Middleware) -> None:
        """Append `middleware`.  Duplicates are allowed."""
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")
        self._middleware.append(middleware)

    register = use

    def has_middleware(self) -> bool:
        return bool(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    async def execute(self, context: ExecutionContext, terminal: Terminal) -> None:
        """Run every middleware against `context`, then `terminal`.

        Args:
            context: The invocation's ExecutionContext.
            terminal: Called once the innermost middleware proceeds (or
                directly, when no middleware is registered).

        Raises:
            MultipleProceedCallsError: a middleware called proceed() twice.
            Exception: anything raised by a middleware or the terminal that
                no outer middleware swallowed.
        """
        # Snapshot so a use() during execution only affects later calls.
        stack = list(self._middleware)

        def make_proceed(index: int) -> Proceed:
            called = False

            async def proceed() -> None:
                nonlocal called
                if called:
                    raise MultipleProceedCallsError(index)
                called = True
                await dispatch(index + 1)

            return proceed

        async def dispatch(index: int) -> None:
            if index < len(stack):
                await maybe_await(stack[index](context, make_proceed(index)))
            else:
                await terminal()

        await dispatch(0)


# -----------------------------------------------------------------------------
# Helper middleware
# -----------------------------------------------------------------------------

def compose_middleware(middleware: list[Middleware]) -> Middleware:
    """Group several middleware into one; they run in list order."""
    inner = MiddlewareChain(middleware)

    async def composed(context: ExecutionContext, proceed: Proceed) -> None:
        await inner.execute(context, proceed)

    return composed


def error_handler(
    handler: Callable[[BaseException, ExecutionContext], Awaitable[None] | None],
) -> Middleware:
    """Observe errors raised downstream, then re-raise them."""

    async def middleware(context: ExecutionContext, proceed: Proceed) -> None:
        try:
            await proceed()
        except Exception as exc:
            await maybe_await(handler(exc, context))
            raise

    return middleware


def conditional(
    predicate: Callable[[ExecutionContext], bool], middleware: Middleware
) -> Middleware:
    """Run `middleware` only when `predicate(context)` is true."""

    async def wrapper(context: ExecutionContext, proceed: Proceed) -> None:
        if predicate(context):
            await maybe_await(middleware(context, proceed))
        else:
            await proceed()

    return wrapper


def timeout_middleware(seconds: float, index: int | None = None) -> Middleware:
    """Race everything downstream against a deadline.

    On expiry raises MiddlewareTimeoutError (naming `index` when given).
    The downstream work is left running: only the wait is abandoned, so
    handler side effects may still land after the caller has an error.
    """
    if seconds <= 0:
        raise ValueError("timeout must be positive")

    async def middleware(context: ExecutionContext, proceed: Proceed) -> None:
        task = asyncio.ensure_future(proceed())
        done, _ = await asyncio.wait({task}, timeout=seconds)
        if task in done:
            task.result()
            return
        # Retrieve the eventual outcome so a late failure is logged, not lost.
        task.add_done_callback(_log_abandoned)
        raise MiddlewareTimeoutError(seconds, index)

    return middleware


def _log_abandoned(task: "asyncio.Future[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Abandoned downstream work failed after timeout: %s", exc)
