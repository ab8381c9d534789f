# =============================================================================
# appkit/app.py  -  The App handle (create_app)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   create_app() validates the configuration and returns an App that owns
#   every process-wide piece of the framework:
#
#     tool registry     name -> ToolDef
#     MiddlewareChain   user middleware, shared by every call
#     PluginHost        plugin instances and their lifecycle state
#     EventBus          subscriber lists
#     adapter           McpAdapter or OpenAIAdapter, picked once here
#     Orchestrator      runs one call through all of the above
#
#   Nothing lives in module globals: two apps in one process never share a
#   plugin, a listener or a middleware.
#
# USAGE:
#   app = create_app("demo", "1.0.0", tools=[greet], plugins=[audit])
#   app.use(auth_middleware)
#   app.on(TOOL_SUCCESS, lambda e: print(e.duration_ms))
#   await app.start()
#   response = await app.call_tool("greet", {"name": "World"})
#   await app.shutdown()
# =============================================================================

import logging
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel

from appkit.adapters import ProtocolAdapter, create_adapter
from appkit.auth import JWTVerifier, TokenVerifier
from appkit.config import AppConfig, GlobalConfig, summarize, validate_config
from appkit.errors import AppError, ConfigError, LifecycleError
from appkit.events import (
    APP_INIT,
    APP_SHUTDOWN,
    APP_START,
    ERROR,
    AnyEventHandler,
    AppInitEvent,
    AppShutdownEvent,
    AppStartEvent,
    ErrorEvent,
    EventBus,
    EventHandler,
    Unsubscribe,
)
from appkit.logger import LoggingSink, safe_json
from appkit.middleware import Middleware, MiddlewareChain
from appkit.orchestrator import Orchestrator
from appkit.plugins import (
    Plugin,
    PluginHost,
    PluginInitContext,
    PluginShutdownContext,
    PluginStartContext,
    RequestContext,
    ResponseContext,
    UILoadContext,
)
from appkit.tools import EmptyInput, ToolDef, define_tool
from appkit.ui import UIDef, ui_uri

logger = logging.getLogger(__name__)


class App:
    """Handle returned by create_app().  Every registration goes through it."""

    def __init__(self, config: AppConfig, verifier: TokenVerifier | None = None):
        validate_config(config)
        self.config = config
        self._tools: dict[str, ToolDef] = {t.name: t for t in config.tools}
        self._ui: dict[str, UIDef] = dict(config.ui)

        sink = LoggingSink(logger)
        settings = config.config
        self.chain = MiddlewareChain()
        self.plugins = PluginHost(config.plugins, sink=sink)
        self.events = EventBus(max_listeners=settings.max_listeners, sink=sink)
        self.adapter: ProtocolAdapter = create_adapter(settings.protocol)

        if verifier is None and settings.auth is not None and settings.auth.enabled:
            verifier = JWTVerifier(
                key=settings.auth.key,
                jwks_url=settings.auth.jwks_url,
                issuer=settings.auth.issuer,
                audience=settings.auth.audience,
                algorithms=settings.auth.algorithms,
                required_scopes=settings.auth.required_scopes,
            )
        self.orchestrator = Orchestrator(
            self._tools, self.chain, self.plugins, self.events, self.adapter, verifier
        )

        self._started = False
        self._start_called = False
        self._shutdown_called = False

        if settings.debug.enabled:
            self.events.on_any(_debug_event)

    # --- read-only views ---------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def version(self) -> str:
        return self.config.version

    @property
    def protocol(self) -> str:
        return self.adapter.protocol

    @property
    def tools(self) -> Mapping[str, ToolDef]:
        return MappingProxyType(self._tools)

    @property
    def ui(self) -> Mapping[str, UIDef]:
        return MappingProxyType(self._ui)

    @property
    def started(self) -> bool:
        return self._started

    # --- registration ------------------------------------------------------

    def use(self, middleware: Middleware) -> "App":
        """Register middleware for every subsequent call."""
        self.chain.use(middleware)
        return self

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        return self.events.on(event, handler)

    def once(self, event: str, handler: EventHandler) -> Unsubscribe:
        return self.events.once(event, handler)

    def on_any(self, handler: AnyEventHandler) -> Unsubscribe:
        return self.events.on_any(handler)

    def add_tool(self, tool: ToolDef) -> ToolDef:
        if not isinstance(tool, ToolDef):
            raise ConfigError(f"Expected a ToolDef, got {type(tool).__name__}")
        if self._start_called:
            raise LifecycleError("Tools must be registered before start()")
        if tool.name in self._tools:
            raise ConfigError(f"Duplicate tool name '{tool.name}'")
        if tool.ui and tool.ui not in self._ui:
            raise ConfigError(f"Tool '{tool.name}' references unknown UI '{tool.ui}'")
        self._tools[tool.name] = tool
        return tool

    def tool(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        input_model: type[BaseModel] = EmptyInput,
        output_model: type[BaseModel] | None = None,
        **options: Any,
    ) -> Callable[[Callable[..., Any]], ToolDef]:
        """Decorator form of add_tool(); see tools.define_tool."""
        build = define_tool(
            name, description=description, input_model=input_model,
            output_model=output_model, **options,
        )

        def decorator(handler: Callable[..., Any]) -> ToolDef:
            return self.add_tool(build(handler))

        return decorator

    # --- lifecycle ---------------------------------------------------------

    async def start(self, transport: str = "stdio", port: int | None = None) -> None:
        """Initialize then start every plugin.

        Raises the first PluginInitError / PluginStartError encountered;
        the app is unusable afterwards.
        """
        if self._start_called:
            raise LifecycleError("App.start() may only be called once")
        self._start_called = True

        try:
            await self.plugins.init(PluginInitContext(config=self.config, tools=self.tools))
        except AppError as exc:
            await self.events.emit(ERROR, ErrorEvent(exc, f"plugin:{_plugin_of(exc)}:on_init"))
            raise
        await self.events.emit(APP_INIT, AppInitEvent(summarize(self.config)))

        try:
            await self.plugins.start(PluginStartContext(transport=transport, port=port))
        except AppError as exc:
            await self.events.emit(ERROR, ErrorEvent(exc, f"plugin:{_plugin_of(exc)}:on_start"))
            raise
        self._started = True
        await self.events.emit(APP_START, AppStartEvent(transport, port))
        logger.info(
            "%s v%s started (%s, %d tool(s), %d plugin(s))",
            self.name, self.version, self.protocol, len(self._tools), len(self.plugins.plugins),
        )

    async def shutdown(self, graceful: bool = True) -> None:
        """Run on_shutdown hooks in reverse order.

        Every hook runs; failures are raised together as PluginShutdownError.
        """
        if self._shutdown_called:
            raise LifecycleError("App.shutdown() may only be called once")
        self._shutdown_called = True
        self._started = False
        await self.events.emit(APP_SHUTDOWN, AppShutdownEvent(graceful))
        await self.plugins.shutdown(
            PluginShutdownContext(graceful=graceful, timeout=self.config.config.shutdown_timeout)
        )
        logger.info("%s shut down", self.name)

    # --- invocation --------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        arguments: Any = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run one tool call and return the protocol-shaped response."""
        return await self.orchestrator.invoke(name, arguments, metadata)

    # --- transport hooks ---------------------------------------------------

    async def notify_request(self, context: RequestContext) -> None:
        await self.plugins.on_request(context)

    async def notify_response(self, context: ResponseContext) -> None:
        await self.plugins.on_response(context)

    def ui_uri(self, key: str) -> str:
        return ui_uri(self.name, key)

    async def load_ui(self, key: str) -> str:
        """Markup for UI `key`; fires on_ui_load first."""
        ui = self._ui.get(key)
        if ui is None:
            raise ConfigError(f"Unknown UI '{key}'")
        await self.plugins.on_ui_load(UILoadContext(ui_key=key, uri=self.ui_uri(key)))
        return ui.read_html(key)

    # --- host-facing descriptions -----------------------------------------

    def describe_tools(self) -> list[dict[str, Any]]:
        return [self.adapter.describe_tool(tool) for tool in self._tools.values()]

    def tool_meta(self, name: str) -> dict[str, Any]:
        tool = self._tools[name]
        uri = self.ui_uri(tool.ui) if tool.ui else None
        return self.adapter.build_tool_meta(tool, self.name, uri)

    def ui_resource_meta(self, key: str) -> dict[str, Any]:
        return self.adapter.build_ui_resource_meta(self._ui[key])


def create_app(
    name: str,
    version: str,
    *,
    tools: Iterable[ToolDef] = (),
    plugins: Iterable[Plugin] = (),
    ui: Mapping[str, UIDef] | None = None,
    config: GlobalConfig | None = None,
    verifier: TokenVerifier | None = None,
) -> App:
    """Build an App.  Raises ConfigError if anything is inconsistent.

    `verifier` overrides the JWTVerifier that `config.auth` would build.
    """
    return App(
        AppConfig(
            name=name,
            version=version,
            tools=list(tools),
            plugins=list(plugins),
            ui=dict(ui or {}),
            config=config or GlobalConfig(),
        ),
        verifier=verifier,
    )


def _plugin_of(error: AppError) -> str:
    return getattr(error, "plugin_name", "unknown")


def _debug_event(event: str, payload: Any) -> None:
    logger.debug("event %s %s", event, safe_json(_payload_dict(payload)))


def _payload_dict(payload: Any) -> Any:
    if hasattr(payload, "__dataclass_fields__"):
        return {k: getattr(payload, k) for k in payload.__dataclass_fields__}
    return payload
