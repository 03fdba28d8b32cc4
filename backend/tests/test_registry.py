"""
Tests for the tool registry

Run with: pytest backend/tests/test_registry.py -v
"""

from typing import List, Optional

import pytest
from pydantic import BaseModel, ValidationError

from brandforge.agents.graph import create_tool_registry
from brandforge.core.exceptions import ToolSchemaError
from brandforge.tools.base import ToolExecutor
from brandforge.tools.registry import ToolRegistry, build_input_schema

from conftest import FakeGeminiService, make_settings


EXPECTED_TOOLS = [
    "analyze_canvas",
    "search_trends",
    "generate_image",
    "audit_compliance",
    "refine_prompt",
    "complete_task",
]


def _registry() -> ToolRegistry:
    return create_tool_registry(FakeGeminiService(), make_settings())


def test_all_tools_registered_in_order():
    assert _registry().names() == EXPECTED_TOOLS


def test_every_schema_is_flat():
    for entry in _registry().list():
        schema = entry["input_schema"]
        assert schema["type"] == "object"
        for name, prop in schema["properties"].items():
            assert "anyOf" not in prop, f"{entry['name']}.{name} kept an anyOf"
            assert prop.get("type") in {"string", "integer", "number", "boolean", "array"}
            if prop["type"] == "array":
                assert prop["items"]["type"] == "string"


def test_optional_fields_are_not_required():
    schema = build_input_schema("generate_image", _registry().get("generate_image").input_model)
    assert schema["required"] == ["prompt"]
    assert schema["properties"]["aspect_ratio"]["enum"] == ["1:1", "16:9", "9:16", "4:3", "3:4"]


def test_function_declarations_cover_every_tool():
    tools = _registry().function_declarations()
    assert len(tools) == 1
    assert [d.name for d in tools[0].function_declarations] == EXPECTED_TOOLS


class Point(BaseModel):
    x: int
    y: int


class NestedInput(BaseModel):
    corner: Point


class ListOfObjectsInput(BaseModel):
    points: Optional[List[Point]] = None


@pytest.mark.parametrize("model", [NestedInput, ListOfObjectsInput])
def test_nested_schema_rejected(model):
    with pytest.raises(ToolSchemaError):
        build_input_schema("nested_tool", model)


def test_register_rejects_nested_tool():
    class NestedTool(ToolExecutor):
        name = "nested_tool"
        description = "Has a nested input"
        input_model = NestedInput

        async def execute(self, args, state):
            raise NotImplementedError

    with pytest.raises(ToolSchemaError):
        ToolRegistry().register(NestedTool())


def test_validate_args():
    registry = _registry()
    args = registry.validate_args("complete_task", {"success": True, "message": "done"})
    assert args.success is True

    with pytest.raises(ValidationError):
        registry.validate_args("complete_task", {"message": "missing flag"})
    with pytest.raises(KeyError):
        registry.validate_args("paint_fence", {})
