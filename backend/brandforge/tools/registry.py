"""
Tool Registry

Declarative list of the capabilities advertised to Gemini. Input schemas are
generated from flat pydantic models; nested objects exceed what the function
calling API accepts, so registration rejects them outright.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from google.genai import types
from pydantic import BaseModel

from brandforge.core.exceptions import ToolSchemaError
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)

PRIMITIVE_TYPES = {"string", "integer", "number", "boolean", "null"}


def _is_flat_property(prop: Dict[str, Any]) -> bool:
    """A property is flat if it is a primitive or an array of primitives."""
    if "$ref" in prop or "allOf" in prop:
        return False
    if "anyOf" in prop or "oneOf" in prop:
        return all(_is_flat_property(p) for p in prop.get("anyOf", prop.get("oneOf", [])))
    prop_type = prop.get("type")
    if prop_type == "array":
        items = prop.get("items", {})
        return "$ref" not in items and items.get("type", "string") in PRIMITIVE_TYPES
    return prop_type in PRIMITIVE_TYPES or (prop_type is None and "enum" in prop)


def _collapse_optional(prop: Dict[str, Any]) -> Dict[str, Any]:
    """Turn `anyOf: [X, null]` into X and drop titles for the advertised schema."""
    variants = prop.get("anyOf")
    if variants:
        non_null = [v for v in variants if v.get("type") != "null"]
        if len(non_null) == 1:
            merged = {k: v for k, v in prop.items() if k != "anyOf"}
            merged.update(non_null[0])
            prop = merged
    return {k: v for k, v in prop.items() if k not in ("title", "default")}


def build_input_schema(tool_name: str, model: type[BaseModel]) -> Dict[str, Any]:
    """
    JSON schema for a tool's input model.

    Raises:
        ToolSchemaError: the model contains nested objects
    """
    schema = model.model_json_schema()
    if "$defs" in schema:
        raise ToolSchemaError(f"Tool '{tool_name}' input schema has nested definitions")

    properties = {}
    for name, prop in schema.get("properties", {}).items():
        if not _is_flat_property(prop):
            raise ToolSchemaError(f"Tool '{tool_name}' property '{name}' is not flat")
        properties[name] = _collapse_optional(prop)

    return {
        "type": "object",
        "properties": properties,
        "required": schema.get("required", []),
    }


class ToolRegistry:
    """Registry of tools available to the agent."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolExecutor] = {}
        self._schemas: Dict[str, Dict[str, Any]] = {}

    def register(self, executor: ToolExecutor) -> None:
        schema = build_input_schema(executor.name, executor.input_model)
        if executor.name in self._tools:
            logger.warning("[Tools] Replacing registered tool '%s'", executor.name)
        self._tools[executor.name] = executor
        self._schemas[executor.name] = schema

    def register_all(self, executors: Iterable[ToolExecutor]) -> None:
        for executor in executors:
            self.register(executor)

    def get(self, name: str) -> Optional[ToolExecutor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def list(self) -> List[Dict[str, Any]]:
        """[{name, description, input_schema, reads, writes}] in registration order."""
        return [
            {
                "name": name,
                "description": executor.description,
                "input_schema": self._schemas[name],
                "reads": list(executor.reads),
                "writes": list(executor.writes),
            }
            for name, executor in self._tools.items()
        ]

    def function_declarations(self) -> List[types.Tool]:
        """Gemini tool declaration for every registered tool."""
        declarations = [
            types.FunctionDeclaration(
                name=name,
                description=executor.description,
                parameters_json_schema=self._schemas[name],
            )
            for name, executor in self._tools.items()
        ]
        return [types.Tool(function_declarations=declarations)]

    def validate_args(self, name: str, args: Optional[Dict[str, Any]]) -> BaseModel:
        """
        Validate call arguments against the tool's input model.

        Raises:
            KeyError: unknown tool
            pydantic.ValidationError: arguments do not match the schema
        """
        executor = self._tools.get(name)
        if executor is None:
            raise KeyError(name)
        return executor.input_model.model_validate(args or {})
