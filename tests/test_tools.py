"""
ToolDef and ExecutionContext tests
"""

import pytest
from pydantic import BaseModel

from appkit.context import ExecutionContext
from appkit.errors import ConfigError, InputValidationError, OutputValidationError
from appkit.tools import ToolDef, define_tool


class Point(BaseModel):
    x: int
    y: int


def test_define_tool_uses_function_name_and_docstring():
    @define_tool(input_model=Point)
    def plot(input):
        """Plot a point.

        Longer text that is not part of the description.
        """
        return {}

    assert plot.name == "plot"
    assert plot.description == "Plot a point."
    assert plot.input_schema()["required"] == ["x", "y"]


def test_validate_input_reports_field_paths():
    tool = ToolDef("plot", "Plot", lambda i: {}, input_model=Point)

    assert tool.validate_input({"x": 1, "y": "2"}) == Point(x=1, y=2)
    with pytest.raises(InputValidationError) as info:
        tool.validate_input({"x": "left"})

    paths = [issue["path"] for issue in info.value.details["issues"]]
    assert ["x"] in paths and ["y"] in paths
    assert info.value.message.startswith("Invalid input: ")


def test_validate_output_keeps_reserved_keys():
    tool = ToolDef("plot", "Plot", lambda i: {}, output_model=Point)

    assert tool.validate_output({"x": 1, "y": 2, "_text": "ok"}) == {"x": 1, "y": 2, "_text": "ok"}
    assert tool.validate_output(Point(x=3, y=4)) == {"x": 3, "y": 4}
    with pytest.raises(OutputValidationError):
        tool.validate_output({"x": 1})


def test_handler_arity_decides_context_argument():
    context = ExecutionContext.create("t", None)
    one = ToolDef("one", "One", lambda input: "one")
    two = ToolDef("two", "Two", lambda input, ctx: ctx.tool_name)

    assert one.call(None, context) == "one"
    assert two.call(None, context) == "t"


@pytest.mark.parametrize("options", [
    {"name": ""},
    {"handler": "not callable"},
    {"input_model": dict},
    {"visibility": "everyone"},
])
def test_invalid_definitions_raise_config_error(options):
    fields = {"name": "t", "description": "T", "handler": lambda i: {}, **options}
    with pytest.raises(ConfigError):
        ToolDef(**fields)


def test_context_metadata_is_read_only_and_state_is_fresh():
    source = {"locale": "en-US"}
    first = ExecutionContext.create("t", None, source)
    second = ExecutionContext.create("t", None, source)

    with pytest.raises(TypeError):
        first.metadata["locale"] = "fr"
    source["locale"] = "de"

    first.state["k"] = 1
    assert first.metadata["locale"] == "en-US"
    assert second.state == {}
    assert not first.has_response
