# =============================================================================
# appkit/builtin/rate_limit.py  -  Fixed-window rate limiting middleware
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Caps how many calls each caller may make per window.  The caller key is,
#   in order of preference:
#     1. key(context), when a key function is given
#     2. state["user_id"]     (set by an earlier auth middleware)
#     3. metadata["ip"]
#     4. "default"
#
#   On every allowed call it writes state["rate_limit_remaining"].  Once the
#   window is used up it raises RateLimitExceededError with a retry-after in
#   whole seconds.
#
# CONCURRENCY:
#   The counters are shared by every concurrent call.  The check and the
#   increment happen with no await in between, so two calls can never both
#   take the last slot.  Windows that have expired are dropped at the start
#   of every call.
# =============================================================================

import math
import time
from dataclasses import dataclass
from typing import Callable

from appkit.context import ExecutionContext
from appkit.errors import RateLimitExceededError
from appkit.middleware import Proceed

REMAINING_KEY = "rate_limit_remaining"


@dataclass
class _Window:
    count: int
    reset_at: float


def default_key(context: ExecutionContext) -> str:
    return str(context.state.get("user_id") or context.metadata.get("ip") or "default")


class RateLimiter:
    """Fixed-window limiter usable directly as a middleware.

    Expired windows are evicted on each call, so the table only holds
    callers seen during the current window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        key: Callable[[ExecutionContext], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key = key or default_key
        self.clock = clock
        self._windows: dict[str, _Window] = {}

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    async def __call__(self, context: ExecutionContext, proceed: Proceed) -> None:
        now = self.clock()
        self._evict_expired(now)
        caller = self.key(context)
        window = self._windows.get(caller)
        if window is None:
            window = self._windows[caller] = _Window(0, now + self.window_seconds)

        if window.count >= self.max_requests:
            raise RateLimitExceededError(caller, math.ceil(window.reset_at - now))

        window.count += 1
        context.state[REMAINING_KEY] = self.max_requests - window.count
        await proceed()

    def _evict_expired(self, now: float) -> None:
        expired = [caller for caller, w in self._windows.items() if now >= w.reset_at]
        for caller in expired:
            del self._windows[caller]


def rate_limit_middleware(
    max_requests: int,
    window_seconds: float,
    key: Callable[[ExecutionContext], str] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RateLimiter:
    """Allow `max_requests` calls per `window_seconds` for each caller key."""
    return RateLimiter(max_requests, window_seconds, key, clock)
