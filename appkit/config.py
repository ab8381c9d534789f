# =============================================================================
# appkit/config.py  -  App configuration and validation
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Holds the settings an App is built from and checks them before anything
#   runs.  Settings come from code (create_app keyword arguments) or from the
#   environment via GlobalConfig.from_env().
#
# ENVIRONMENT VARIABLES (load a .env file first with python-dotenv):
#   APPKIT_PROTOCOL          "mcp" (default) or "openai"
#   APPKIT_LOG_LEVEL         debug | info | warn | error   (default: info)
#   APPKIT_DEBUG             1/true/yes turns on debug logging of payloads
#   APPKIT_MAX_LISTENERS     per-event listener cap (default: 50, 0 = none)
#   APPKIT_SHUTDOWN_TIMEOUT  seconds each on_shutdown hook may take (30)
#   APPKIT_JWKS_URL          enables bearer-token auth against this JWKS
#   APPKIT_ISSUER            expected token issuer
#   APPKIT_AUDIENCE          expected token audience
#   APPKIT_REQUIRED_SCOPES   space- or comma-separated scope list
# =============================================================================

import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from appkit.adapters import PROTOCOLS
from appkit.errors import ConfigError
from appkit.events import DEFAULT_MAX_LISTENERS
from appkit.logger import LEVELS
from appkit.plugins import Plugin
from appkit.tools import ToolDef
from appkit.ui import UIDef

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    jwks_url: str | None = None
    key: str | None = None
    issuer: str | None = None
    audience: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    required_scopes: tuple[str, ...] = ()

    @property
    def enabled(self) -> bool:
        return bool(self.jwks_url or self.key)


@dataclass(frozen=True)
class DebugConfig:
    enabled: bool = False
    level: str = "info"


@dataclass(frozen=True)
class GlobalConfig:
    protocol: str = "mcp"
    debug: DebugConfig = field(default_factory=DebugConfig)
    auth: AuthConfig | None = None
    max_listeners: int = DEFAULT_MAX_LISTENERS
    shutdown_timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GlobalConfig":
        env = os.environ if environ is None else environ
        debug_on = env.get("APPKIT_DEBUG", "").strip().lower() in _TRUTHY
        level = env.get("APPKIT_LOG_LEVEL", "debug" if debug_on else "info").strip().lower()

        auth = None
        if env.get("APPKIT_JWKS_URL"):
            scopes = env.get("APPKIT_REQUIRED_SCOPES", "").replace(",", " ").split()
            auth = AuthConfig(
                jwks_url=env["APPKIT_JWKS_URL"],
                issuer=env.get("APPKIT_ISSUER") or None,
                audience=env.get("APPKIT_AUDIENCE") or None,
                required_scopes=tuple(scopes),
            )

        try:
            max_listeners = int(env.get("APPKIT_MAX_LISTENERS", DEFAULT_MAX_LISTENERS))
            shutdown_timeout = float(env.get("APPKIT_SHUTDOWN_TIMEOUT", 30.0))
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting in environment: {exc}") from exc

        return cls(
            protocol=env.get("APPKIT_PROTOCOL", "mcp").strip().lower(),
            debug=DebugConfig(enabled=debug_on, level=level),
            auth=auth,
            max_listeners=max_listeners,
            shutdown_timeout=shutdown_timeout,
        )


@dataclass
class AppConfig:
    name: str
    version: str
    tools: list[ToolDef] = field(default_factory=list)
    plugins: list[Plugin] = field(default_factory=list)
    ui: dict[str, UIDef] = field(default_factory=dict)
    config: GlobalConfig = field(default_factory=GlobalConfig)


def validate_config(config: AppConfig) -> None:
    """Raise ConfigError describing every problem found in `config`."""
    problems: list[str] = []

    if not isinstance(config.name, str) or not config.name.strip():
        problems.append("name must be a non-empty string")
    if not isinstance(config.version, str) or not config.version.strip():
        problems.append("version must be a non-empty string")

    settings = config.config
    if settings.protocol not in PROTOCOLS:
        problems.append(f"protocol must be one of {PROTOCOLS}, got {settings.protocol!r}")
    if settings.debug.level not in LEVELS:
        problems.append(f"unknown log level {settings.debug.level!r}")
    if settings.max_listeners < 0:
        problems.append("max_listeners must be >= 0")
    if settings.shutdown_timeout <= 0:
        problems.append("shutdown_timeout must be positive")

    seen_tools: set[str] = set()
    for tool in config.tools:
        if not isinstance(tool, ToolDef):
            problems.append(f"tools entries must be ToolDef, got {type(tool).__name__}")
            continue
        if tool.name in seen_tools:
            problems.append(f"duplicate tool name '{tool.name}'")
        seen_tools.add(tool.name)
        if tool.ui and tool.ui not in config.ui:
            problems.append(f"tool '{tool.name}' references unknown UI '{tool.ui}'")

    seen_plugins: set[str] = set()
    for plugin in config.plugins:
        if not isinstance(plugin, Plugin):
            problems.append(f"plugins entries must be Plugin, got {type(plugin).__name__}")
            continue
        if plugin.name in seen_plugins:
            problems.append(f"duplicate plugin name '{plugin.name}'")
        seen_plugins.add(plugin.name)

    for key, ui in config.ui.items():
        if not isinstance(ui, UIDef):
            problems.append(f"ui '{key}' must be a UIDef, got {type(ui).__name__}")

    if problems:
        raise ConfigError("Invalid app config: " + "; ".join(problems), {"problems": problems})


def summarize(config: AppConfig) -> dict[str, Any]:
    """Small dict describing the app, used as the app:init payload."""
    return {
        "name": config.name,
        "version": config.version,
        "protocol": config.config.protocol,
        "tools": [t.name for t in config.tools],
        "plugins": [p.name for p in config.plugins],
        "ui": sorted(config.ui),
    }
