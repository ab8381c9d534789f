"""JSON-Schema helpers built on pydantic.

Tool contracts are pydantic models; this module is the only place that
turns them into the JSON-Schema documents the protocol hosts expect.
"""

from typing import Any

from pydantic import BaseModel, TypeAdapter


def is_model(value: Any) -> bool:
    """True if `value` is a pydantic model class."""
    return isinstance(value, type) and issubclass(value, BaseModel)


def to_json_schema(schema: Any, include_schema: bool = False) -> dict[str, Any]:
    """JSON-Schema for a pydantic model class (or any type pydantic accepts).

    `$schema` is left out unless `include_schema` is set; MCP hosts reject it.
    """
    if is_model(schema):
        result = schema.model_json_schema()
    else:
        result = TypeAdapter(schema).json_schema()
    if include_schema:
        result = {"$schema": "https://json-schema.org/draft/2020-12/schema", **result}
    else:
        result.pop("$schema", None)
    return result
