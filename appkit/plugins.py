# =============================================================================
# appkit/plugins.py  -  Plugins and the Plugin Host
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   A Plugin is a named, versioned bundle of optional hooks.  The PluginHost
#   owns the ordered plugin list for the life of the app and runs the hooks.
#
# HOOK SEMANTICS:
#
#   hook               order      on failure
#   -----------------  ---------  -------------------------------------------
#   on_init            forward    stop immediately, raise PluginInitError
#   on_start           forward    stop immediately, raise PluginStartError
#   on_shutdown        REVERSE    keep going, raise PluginShutdownError with
#                                 every failure once all hooks have run
#   before_tool_call   forward    stop immediately, re-raise (a veto)
#   after_tool_call    forward    log as PluginHookError, keep going
#   on_tool_error      forward    log as PluginHookError, keep going
#   on_request         forward    log as PluginHookError, keep going
#   on_response        forward    log as PluginHookError, keep going
#   on_ui_load         forward    log as PluginHookError, keep going
#
#   Hooks run sequentially; each is awaited before the next starts.  Hooks
#   may be plain functions or coroutines.
#
# LIFECYCLE:
#   init() -> start() -> shutdown(), each at most once per host.  shutdown()
#   only tears down plugins whose init step completed.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from appkit.context import ExecutionContext
from appkit.errors import (
    ConfigError,
    LifecycleError,
    PluginHookError,
    PluginInitError,
    PluginShutdownError,
    PluginStartError,
)
from appkit.logger import LoggingSink, LogSink
from appkit.middleware import maybe_await

logger = logging.getLogger(__name__)

Hook = Callable[..., Any]

# Per-call hooks receive the invocation's ExecutionContext.
ToolCallContext = ExecutionContext


# -----------------------------------------------------------------------------
# Hook contexts
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PluginInitContext:
    config: Any
    tools: Mapping[str, Any]


@dataclass(frozen=True)
class PluginStartContext:
    transport: str = "stdio"
    port: int | None = None


@dataclass(frozen=True)
class PluginShutdownContext:
    graceful: bool = True
    timeout: float = 30.0


@dataclass(frozen=True)
class RequestContext:
    method: str
    path: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseContext(RequestContext):
    status_code: int = 200
    body: Any = None


@dataclass(frozen=True)
class UILoadContext:
    ui_key: str
    uri: str


# -----------------------------------------------------------------------------
# Plugin
# -----------------------------------------------------------------------------

@dataclass
class Plugin:
    """A bundle of lifecycle and per-call hooks.

    Only `name` is required.  When `config_schema` (a pydantic model class)
    is given, `config` is validated against it at construction and replaced
    by the parsed model instance.

    Example:
        audit = Plugin(
            name="audit",
            version="1.0.0",
            before_tool_call=lambda ctx: print("calling", ctx.tool_name),
        )
    """

    name: str
    version: str | None = None
    config: Any = None
    config_schema: type[BaseModel] | None = None

    on_init: Hook | None = None
    on_start: Hook | None = None
    on_shutdown: Hook | None = None

    before_tool_call: Hook | None = None
    after_tool_call: Hook | None = None
    on_tool_error: Hook | None = None

    on_request: Hook | None = None
    on_response: Hook | None = None
    on_ui_load: Hook | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ConfigError("Plugin.name is required and must be a non-empty string")
        if self.config_schema is not None:
            try:
                self.config = self.config_schema.model_validate(self.config or {})
            except ValidationError as exc:
                raise ConfigError(
                    f"Invalid config for plugin '{self.name}': {exc.error_count()} error(s)",
                    {"errors": [e["msg"] for e in exc.errors()]},
                ) from exc

    def hook(self, name: str) -> Hook | None:
        return getattr(self, name, None)


# -----------------------------------------------------------------------------
# Plugin Host
# -----------------------------------------------------------------------------

class PluginHost:
    """Runs plugin hooks with the ordering and isolation rules above."""

    def __init__(self, plugins: Iterable[Plugin] | None = None, sink: LogSink | None = None):
        self._plugins: list[Plugin] = []
        self._sink = sink or LoggingSink(logger)
        self._init_called = False
        self._initialized = False
        self._start_called = False
        self._shutdown_called = False
        # Plugins whose init step completed; shutdown tears these down.
        self._ready: list[Plugin] = []
        if plugins:
            self.register_all(plugins)

    # --- registration ------------------------------------------------------

    def register_all(self, plugins: Iterable[Plugin]) -> None:
        if self._init_called:
            raise LifecycleError("Plugins must be registered before init()")
        seen = {p.name for p in self._plugins}
        for plugin in plugins:
            if not isinstance(plugin, Plugin):
                raise ConfigError(f"Expected a Plugin, got {type(plugin).__name__}")
            if plugin.name in seen:
                raise ConfigError(f"Duplicate plugin name: '{plugin.name}'")
            seen.add(plugin.name)
            self._plugins.append(plugin)

    @property
    def plugins(self) -> tuple[Plugin, ...]:
        return tuple(self._plugins)

    def get(self, name: str) -> Plugin | None:
        return next((p for p in self._plugins if p.name == name), None)

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def started(self) -> bool:
        return self._start_called and self._initialized

    # --- lifecycle ---------------------------------------------------------

    async def init(self, context: PluginInitContext) -> None:
        if self._init_called:
            raise LifecycleError("PluginHost.init() may only be called once")
        self._init_called = True
        for plugin in self._plugins:
            if plugin.on_init is not None:
                try:
                    await maybe_await(plugin.on_init(context))
                except Exception as exc:
                    raise PluginInitError(plugin.name, exc) from exc
            self._ready.append(plugin)
        self._initialized = True
        logger.debug("Initialized %d plugin(s)", len(self._plugins))

    async def start(self, context: PluginStartContext) -> None:
        if not self._initialized:
            raise LifecycleError("PluginHost.start() requires a successful init()")
        if self._start_called:
            raise LifecycleError("PluginHost.start() may only be called once")
        self._start_called = True
        for plugin in self._plugins:
            if plugin.on_start is not None:
                try:
                    await maybe_await(plugin.on_start(context))
                except Exception as exc:
                    raise PluginStartError(plugin.name, exc) from exc

    async def shutdown(self, context: PluginShutdownContext) -> None:
        if self._shutdown_called:
            raise LifecycleError("PluginHost.shutdown() may only be called once")
        self._shutdown_called = True
        failures: list[PluginHookError] = []
        for plugin in reversed(self._ready):
            if plugin.on_shutdown is None:
                continue
            try:
                await asyncio.wait_for(maybe_await(plugin.on_shutdown(context)), context.timeout)
            except asyncio.TimeoutError:
                error = PluginHookError(
                    plugin.name, "on_shutdown", TimeoutError(f"timed out after {context.timeout:g}s")
                )
                self._report(error)
                failures.append(error)
            except Exception as exc:
                error = PluginHookError(plugin.name, "on_shutdown", exc)
                error.__cause__ = exc
                self._report(error)
                failures.append(error)
        if failures:
            raise PluginShutdownError(failures)

    # --- per-call hooks ----------------------------------------------------

    async def before_tool_call(self, context: ToolCallContext) -> None:
        """Run before_tool_call hooks.  The first failure propagates."""
        for plugin in self._plugins:
            if plugin.before_tool_call is not None:
                await maybe_await(plugin.before_tool_call(context))

    async def after_tool_call(self, context: ToolCallContext, result: Any) -> None:
        await self._run_isolated("after_tool_call", context, result)

    async def on_tool_error(self, context: ToolCallContext, error: BaseException) -> None:
        await self._run_isolated("on_tool_error", context, error)

    async def on_request(self, context: RequestContext) -> None:
        await self._run_isolated("on_request", context)

    async def on_response(self, context: ResponseContext) -> None:
        await self._run_isolated("on_response", context)

    async def on_ui_load(self, context: UILoadContext) -> None:
        await self._run_isolated("on_ui_load", context)

    async def _run_isolated(self, hook_name: str, *args: Any) -> list[PluginHookError]:
        failures: list[PluginHookError] = []
        for plugin in self._plugins:
            hook = plugin.hook(hook_name)
            if hook is None:
                continue
            try:
                await maybe_await(hook(*args))
            except Exception as exc:
                error = PluginHookError(plugin.name, hook_name, exc)
                error.__cause__ = exc
                self._report(error)
                failures.append(error)
        return failures

    def _report(self, error: PluginHookError) -> None:
        self._sink.log("error", error.message, {"plugin": error.plugin_name, "hook": error.hook})
