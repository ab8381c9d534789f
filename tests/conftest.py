import pathlib
import sys

import pytest
from pydantic import BaseModel

# Ensure project root is importable in tests
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from appkit.app import create_app  # noqa: E402
from appkit.tools import define_tool  # noqa: E402


class GreetInput(BaseModel):
    name: str


class GreetOutput(BaseModel):
    message: str


@pytest.fixture
def greet_calls():
    """Inputs the greet handler has seen, in call order."""
    return []


@pytest.fixture
def greet_tool(greet_calls):
    @define_tool(input_model=GreetInput, output_model=GreetOutput)
    async def greet(input, context):
        """Greet someone by name."""
        greet_calls.append(input.name)
        return {"message": f"Hello, {input.name}"}

    return greet


@pytest.fixture
def app(greet_tool):
    return create_app("test-app", "1.0.0", tools=[greet_tool])


@pytest.fixture
def events(app):
    """Every event name the app emits, recorded via on_any()."""
    seen = []
    app.on_any(lambda name, payload: seen.append(name))
    return seen
