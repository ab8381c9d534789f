# =============================================================================
# appkit/logger.py  -  Logging setup and the framework's log sink
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   1. Configures stdlib logging to write to STDERR.  With the stdio
#      transport, STDOUT carries the MCP JSON-RPC stream; anything printed
#      there corrupts the protocol.
#   2. Provides the colour-coded request / status / response helpers used by
#      the built-in logging plugin:
#        - CYAN   incoming tool calls with their input
#        - YELLOW intermediate status lines
#        - GREEN  results
#        - RED    failures
#   3. Provides LoggingSink, the `log(level, message, data)` sink that the
#      isolation boundaries (plugin hooks, event subscribers) report to.
# =============================================================================

import json
import logging
import sys
from typing import Any, Protocol, TextIO

from appkit.errors import AppError

_CYAN = "\033[36m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_RESET = "\033[0m"

LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

logger = logging.getLogger("appkit")


def to_level(level: str | int) -> int:
    """Map "debug" / "info" / "warn" / "error" (or an int) to a logging level."""
    if isinstance(level, int):
        return level
    try:
        return LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def configure_logging(level: str | int = "info", stream: TextIO | None = None) -> None:
    """Send framework logs to stderr (or `stream`) at `level`."""
    logging.basicConfig(
        level=to_level(level),
        format="%(asctime)s [appkit] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=stream or sys.stderr,
    )
    logger.setLevel(to_level(level))


def safe_json(data: Any) -> str:
    """Serialize `data` for a log line; never raises."""
    if isinstance(data, str):
        return data
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    try:
        return json.dumps(data, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        # Circular structures end up here.
        return repr(data)


def log_request(tool_name: str, params: Any = None, log: logging.Logger = logger) -> None:
    """Log an incoming tool call with its input in CYAN."""
    log.info(f"{_CYAN}{tool_name} called with: {safe_json(params)}{_RESET}")


def log_status(message: str, log: logging.Logger = logger) -> None:
    """Log an intermediate status message in YELLOW."""
    log.info(f"{_YELLOW}  → {message}{_RESET}")


def log_response(tool_name: str, result: Any, log: logging.Logger = logger) -> Any:
    """Log the tool result as compact JSON in GREEN, then return it."""
    log.info(f"{_GREEN}  ← {tool_name} response: {safe_json(result)}{_RESET}")
    return result


def log_failure(tool_name: str, error: BaseException, log: logging.Logger = logger) -> None:
    """Log a failed call in RED, with the error's details when it has any."""
    text = error.format_message() if isinstance(error, AppError) else str(error)
    log.error(f"{_RED}  ✗ {tool_name} failed: {text}{_RESET}")


class LogSink(Protocol):
    """Where swallowed errors are reported."""

    def log(self, level: str, message: str, data: Any = None) -> None: ...


class LoggingSink:
    """LogSink backed by a stdlib logger."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def log(self, level: str, message: str, data: Any = None) -> None:
        if data is not None:
            message = f"{message} | {safe_json(data)}"
        self._log.log(to_level(level), message)
