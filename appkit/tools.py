# =============================================================================
# appkit/tools.py  -  Tool definitions (the contract every tool exposes)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   A ToolDef bundles what the pipeline needs to run one tool:
#     - input_model   pydantic model the raw arguments are validated against
#     - handler       `handler(input, context)`, sync or async
#     - output_model  optional pydantic model the handler's result must match
#   plus the presentation fields hosts use (title, visibility, UI binding,
#   annotations, ChatGPT invoking/invoked messages).
#
# HANDLER RESULTS:
#   A handler returns a dict or a pydantic model.  Two reserved keys are
#   stripped before output validation and handed to the protocol adapter:
#     _meta   extra metadata for the UI (never sent to the model)
#     _text   narration text for the model
#
# DEFINING TOOLS:
#
#   class GreetInput(BaseModel):
#       name: str
#
#   @define_tool(description="Greet a user", input_model=GreetInput)
#   async def greet(input, context):
#       return {"message": f"Hello, {input.name}"}
# =============================================================================

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from appkit.errors import (
    ConfigError,
    InputValidationError,
    OutputValidationError,
    format_validation_error,
)
from appkit.schema import is_model, to_json_schema

Visibility = Literal["model", "app", "both"]

# Keys a handler may add to its result that bypass output validation.
RESERVED_OUTPUT_KEYS = ("_meta", "_text")


class EmptyInput(BaseModel):
    """Input model for tools that take no arguments."""

    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolAnnotations:
    read_only_hint: bool | None = None
    destructive_hint: bool | None = None
    open_world_hint: bool | None = None
    idempotent_hint: bool | None = None


@dataclass
class ToolDef:
    name: str
    description: str
    handler: Callable[..., Any]
    input_model: type[BaseModel] = EmptyInput
    output_model: type[BaseModel] | None = None
    title: str | None = None
    ui: str | None = None
    visibility: Visibility = "both"
    annotations: ToolAnnotations | None = None
    invoking_message: str | None = None
    invoked_message: str | None = None
    widget_accessible: bool | None = None
    _takes_context: bool = field(init=False, repr=False, default=True)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Tool name must be a non-empty string")
        if not callable(self.handler):
            raise ConfigError(f"Tool '{self.name}' handler must be callable")
        if not is_model(self.input_model):
            raise ConfigError(f"Tool '{self.name}' input_model must be a pydantic model class")
        if self.output_model is not None and not is_model(self.output_model):
            raise ConfigError(f"Tool '{self.name}' output_model must be a pydantic model class")
        if self.visibility not in ("model", "app", "both"):
            raise ConfigError(f"Tool '{self.name}' has invalid visibility {self.visibility!r}")
        self._takes_context = _positional_arity(self.handler) >= 2

    def validate_input(self, raw: Any) -> BaseModel:
        """Parse raw arguments into `input_model`."""
        if isinstance(raw, self.input_model):
            return raw
        try:
            return self.input_model.model_validate(raw if raw is not None else {})
        except ValidationError as exc:
            raise format_validation_error(exc, InputValidationError) from exc

    def validate_output(self, output: Any) -> Any:
        """Check the handler's result against `output_model`.

        Returns a JSON-compatible value (model results are dumped); the
        reserved `_meta` / `_text` keys are carried over untouched.
        """
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        if self.output_model is None:
            return output

        reserved: dict[str, Any] = {}
        if isinstance(output, dict):
            reserved = {k: output[k] for k in RESERVED_OUTPUT_KEYS if k in output}
            output = {k: v for k, v in output.items() if k not in RESERVED_OUTPUT_KEYS}
        try:
            validated = self.output_model.model_validate(output)
        except ValidationError as exc:
            raise format_validation_error(exc, OutputValidationError) from exc
        return {**validated.model_dump(mode="json"), **reserved}

    def call(self, input: BaseModel, context: Any) -> Any:
        """Invoke the handler; returns whatever it returns (maybe awaitable)."""
        if self._takes_context:
            return self.handler(input, context)
        return self.handler(input)

    def input_schema(self) -> dict[str, Any]:
        return to_json_schema(self.input_model)

    def output_schema(self) -> dict[str, Any] | None:
        return to_json_schema(self.output_model) if self.output_model else None


def define_tool(
    name: str | None = None,
    *,
    description: str | None = None,
    input_model: type[BaseModel] = EmptyInput,
    output_model: type[BaseModel] | None = None,
    **options: Any,
) -> Callable[[Callable[..., Any]], ToolDef]:
    """Decorator turning a handler into a ToolDef.

    `name` defaults to the function name and `description` to the first
    paragraph of its docstring.
    """

    def decorator(handler: Callable[..., Any]) -> ToolDef:
        doc = inspect.getdoc(handler) or ""
        return ToolDef(
            name=name or handler.__name__,
            description=description or doc.split("\n\n")[0].strip(),
            handler=handler,
            input_model=input_model,
            output_model=output_model,
            **options,
        )

    return decorator


def _positional_arity(func: Callable[..., Any]) -> int:
    try:
        params = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return 2
    if any(p.kind is p.VAR_POSITIONAL for p in params):
        return 2
    return sum(
        1 for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    )
