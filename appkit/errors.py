# =============================================================================
# appkit/errors.py  -  Error kinds for the tool-invocation pipeline
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Defines every error the framework can surface.  Each error carries a
#   stable `kind` (an ErrorKind value) and a human-readable message, so the
#   protocol adapters can shape any failure into a wire response without
#   knowing where it came from.
#
# PROPAGATION RULES (who sees what):
#   - PluginInitError / PluginStartError      -> raised out of App.start()
#   - PluginHookError                         -> logged, never reaches a caller
#   - PluginShutdownError                     -> raised out of App.shutdown()
#                                                after every hook has run
#   - everything else                         -> classified by the
#                                                orchestrator and shaped into
#                                                an error response
# =============================================================================

import json
from enum import Enum
from typing import Any

from pydantic import ValidationError


class ErrorKind(str, Enum):
    """Stable identifiers carried by every AppError."""

    INPUT_VALIDATION_ERROR = "INPUT_VALIDATION_ERROR"
    OUTPUT_VALIDATION_ERROR = "OUTPUT_VALIDATION_ERROR"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    MIDDLEWARE_CONTROL_ERROR = "MIDDLEWARE_CONTROL_ERROR"
    MIDDLEWARE_ERROR = "MIDDLEWARE_ERROR"
    SHORT_CIRCUIT_WITHOUT_RESULT = "SHORT_CIRCUIT_WITHOUT_RESULT"
    PLUGIN_INIT_ERROR = "PLUGIN_INIT_ERROR"
    PLUGIN_START_ERROR = "PLUGIN_START_ERROR"
    PLUGIN_HOOK_ERROR = "PLUGIN_HOOK_ERROR"
    PLUGIN_SHUTDOWN_ERROR = "PLUGIN_SHUTDOWN_ERROR"
    LIFECYCLE_ERROR = "LIFECYCLE_ERROR"
    MAX_LISTENERS_EXCEEDED = "MAX_LISTENERS_EXCEEDED"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base class for every framework error.

    Args:
        message: Human-readable description, safe to show to the caller.
        details: Optional structured context (field paths, indices, ...).
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def format_message(self) -> str:
        """Message plus a compact rendering of `details`, if any."""
        if not self.details:
            return self.message
        rendered = ", ".join(
            f"{key}: {json.dumps(value, default=str)}" for key, value in self.details.items()
        )
        return f"{self.message} ({rendered})"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

class InputValidationError(AppError):
    kind = ErrorKind.INPUT_VALIDATION_ERROR


class OutputValidationError(AppError):
    kind = ErrorKind.OUTPUT_VALIDATION_ERROR


# -----------------------------------------------------------------------------
# Tool execution
# -----------------------------------------------------------------------------

class ToolExecutionError(AppError):
    """The handler raised, or a before_tool_call hook vetoed the call."""

    kind = ErrorKind.TOOL_EXECUTION_ERROR


class ToolNotFoundError(AppError):
    kind = ErrorKind.TOOL_NOT_FOUND

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", {"tool": tool_name})
        self.tool_name = tool_name


class ShortCircuitWithoutResultError(AppError):
    kind = ErrorKind.SHORT_CIRCUIT_WITHOUT_RESULT

    def __init__(self, tool_name: str, response_key: str):
        super().__init__(
            f"Middleware short-circuited tool '{tool_name}' without providing a result "
            f"(set state['{response_key}'] or call proceed())",
            {"tool": tool_name},
        )


# -----------------------------------------------------------------------------
# Middleware
# -----------------------------------------------------------------------------

class MiddlewareControlError(AppError):
    """Misuse of the chain's control flow.  Carries the middleware position."""

    kind = ErrorKind.MIDDLEWARE_CONTROL_ERROR

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message, {"middleware_index": index} if index is not None else None)
        self.index = index


class MultipleProceedCallsError(MiddlewareControlError):
    def __init__(self, index: int):
        super().__init__(f"Middleware at index {index} called proceed() multiple times", index)


class MiddlewareTimeoutError(MiddlewareControlError):
    def __init__(self, timeout: float, index: int | None = None):
        if index is not None:
            message = f"Middleware at index {index} timed out after {timeout:g}s"
        else:
            message = f"Middleware chain timed out after {timeout:g}s"
        super().__init__(message, index)
        self.timeout = timeout


class MiddlewareError(AppError):
    """A user middleware raised something that is not an AppError."""

    kind = ErrorKind.MIDDLEWARE_ERROR


# -----------------------------------------------------------------------------
# Plugins and lifecycle
# -----------------------------------------------------------------------------

class PluginInitError(AppError):
    kind = ErrorKind.PLUGIN_INIT_ERROR

    def __init__(self, plugin_name: str, cause: BaseException):
        super().__init__(f"Plugin '{plugin_name}' on_init failed: {cause}", {"plugin": plugin_name})
        self.plugin_name = plugin_name


class PluginStartError(AppError):
    kind = ErrorKind.PLUGIN_START_ERROR

    def __init__(self, plugin_name: str, cause: BaseException):
        super().__init__(f"Plugin '{plugin_name}' on_start failed: {cause}", {"plugin": plugin_name})
        self.plugin_name = plugin_name


class PluginHookError(AppError):
    kind = ErrorKind.PLUGIN_HOOK_ERROR

    def __init__(self, plugin_name: str, hook: str, cause: BaseException):
        super().__init__(
            f"Plugin '{plugin_name}' {hook} failed: {cause}",
            {"plugin": plugin_name, "hook": hook},
        )
        self.plugin_name = plugin_name
        self.hook = hook


class PluginShutdownError(AppError):
    """Aggregate of every on_shutdown failure.  `errors` keeps them in order."""

    kind = ErrorKind.PLUGIN_SHUTDOWN_ERROR

    def __init__(self, errors: list[PluginHookError]):
        names = ", ".join(e.plugin_name for e in errors)
        super().__init__(
            f"{len(errors)} plugin(s) failed to shut down: {names}",
            {"plugins": [e.plugin_name for e in errors]},
        )
        self.errors = errors


class LifecycleError(AppError):
    kind = ErrorKind.LIFECYCLE_ERROR


class ConfigError(AppError):
    kind = ErrorKind.CONFIG_ERROR


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------

class MaxListenersExceededError(AppError):
    kind = ErrorKind.MAX_LISTENERS_EXCEEDED

    def __init__(self, event: str, max_listeners: int):
        super().__init__(
            f"Max listeners ({max_listeners}) exceeded for event '{event}'. "
            "Possible subscription leak; use once() or unsubscribe.",
            {"event": event, "max_listeners": max_listeners},
        )


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------

class AuthError(AppError):
    kind = ErrorKind.AUTH_ERROR


class RateLimitExceededError(AppError):
    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(self, key: str, retry_after: int):
        super().__init__(
            f"Rate limit exceeded. Retry after {retry_after} seconds.",
            {"key": key, "retry_after": retry_after},
        )
        self.retry_after = retry_after


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def format_validation_error(
    exc: ValidationError, error_cls: type[AppError] = InputValidationError
) -> AppError:
    """Turn a pydantic ValidationError into one of our validation errors."""
    issues = [
        {
            "path": [str(part) for part in issue["loc"]],
            "message": issue["msg"],
            "type": issue["type"],
        }
        for issue in exc.errors()
    ]
    lines = [
        f"{'.'.join(issue['path']) or '<root>'}: {issue['message']}" for issue in issues
    ]
    label = "Invalid input" if error_cls is InputValidationError else "Invalid output"
    return error_cls(f"{label}: " + "; ".join(lines), {"issues": issues})


def wrap_error(exc: BaseException, error_cls: type[AppError] = AppError) -> AppError:
    """Return `exc` if it already is an AppError, else wrap it in `error_cls`."""
    if isinstance(exc, AppError):
        return exc
    wrapped = error_cls(str(exc) or type(exc).__name__)
    wrapped.__cause__ = exc
    return wrapped
