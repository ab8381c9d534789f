# =============================================================================
# appkit/context.py  -  Execution Context (one per tool invocation)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Defines the value that travels through a single tool call: middleware,
#   plugin hooks and the handler all receive the same instance.
#
#   tool_name, input and metadata are read-only.  `state` is the one
#   sanctioned mutation surface: early middleware writes (e.g. an
#   authenticated user id), later middleware / plugins / the handler read.
#
# LIFETIME:
#   Created by the orchestrator right before dispatch, dropped once the
#   response has been shaped.  Never reused, never persisted.
# =============================================================================

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

# Reserved state key.  A middleware that returns without calling proceed()
# may place a result here; the orchestrator then uses it as the tool's
# output.
RESPONSE_KEY = "response"


@dataclass(frozen=True)
class ExecutionContext:
    """Per-invocation carrier of request data plus a mutable scratchpad."""

    tool_name: str
    input: Any
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    state: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls, tool_name: str, input: Any, metadata: Mapping[str, Any] | None = None
    ) -> "ExecutionContext":
        """Build a context with a read-only copy of `metadata` and empty state."""
        return cls(
            tool_name=tool_name,
            input=input,
            metadata=MappingProxyType(dict(metadata or {})),
            state={},
        )

    @property
    def has_response(self) -> bool:
        return RESPONSE_KEY in self.state
