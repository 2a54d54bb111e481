"""
Tool model, schema generation and argument validation.

Maps Python callables to JSON-schema described tools that any provider client
can translate to its own wire format.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, get_type_hints

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _json_type(param_type) -> str:
    origin = getattr(param_type, "__origin__", None)
    if origin in _JSON_TYPES:
        return _JSON_TYPES[origin]
    # Optional[X] and X | None
    args = [a for a in getattr(param_type, "__args__", ()) if a is not type(None)]
    if len(args) == 1:
        return _json_type(args[0])
    try:
        return _JSON_TYPES.get(param_type, "string")
    except TypeError:
        return "string"


def _param_descriptions(doc: str) -> Dict[str, str]:
    """Pull ``name: description`` lines out of an Args section."""
    descriptions = {}
    in_args = False
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if in_args:
            if not stripped:
                break
            name, sep, text = stripped.partition(":")
            if sep and name.isidentifier():
                descriptions[name] = text.strip()
    return descriptions


def callable_to_tool_schema(
    callable_func: Callable, name: str, description: Optional[str] = None
) -> Dict[str, Any]:
    """
    Convert a Python callable (function or method) to a provider-neutral tool schema.

    Args:
        callable_func: The callable to convert
        name: Tool name
        description: Optional description

    Returns:
        Dictionary with ``name``, ``description`` and a JSON-schema ``parameters`` object
    """
    sig = inspect.signature(callable_func)
    type_hints = get_type_hints(callable_func)
    doc = inspect.getdoc(callable_func) or ""

    # Get description from docstring if not provided
    if description is None:
        summary = doc.split("\n\n")[0].strip()
        description = summary or f"Execute {name}"

    arg_docs = _param_descriptions(doc)
    parameters = {"type": "object", "properties": {}, "required": []}

    for param_name, param in sig.parameters.items():
        if param_name == "self" or param.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            continue

        param_schema = {
            "type": _json_type(type_hints.get(param_name, str)),
            "description": arg_docs.get(param_name, f"The {param_name} parameter"),
        }
        parameters["properties"][param_name] = param_schema

        if param.default is inspect.Parameter.empty:
            parameters["required"].append(param_name)

    return {"name": name, "description": description, "parameters": parameters}


def _matches_type(value: Any, json_type: str) -> bool:
    if json_type == "string":
        return isinstance(value, str)
    if json_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if json_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if json_type == "boolean":
        return isinstance(value, bool)
    if json_type == "array":
        return isinstance(value, list)
    if json_type == "object":
        return isinstance(value, dict)
    if json_type == "null":
        return value is None
    return True


def validate_arguments(schema: Dict[str, Any], arguments: Any) -> List[str]:
    """Check ``arguments`` against a tool's parameter schema.

    Returns a list of human-readable problems, empty when the arguments are valid.
    """
    if not isinstance(arguments, dict):
        return [f"arguments must be an object, got {type(arguments).__name__}"]

    problems = []
    properties = schema.get("properties", {})

    for key in schema.get("required", []):
        if key not in arguments:
            problems.append(f"missing required argument '{key}'")

    for key, value in arguments.items():
        prop = properties.get(key)
        if prop is None:
            if schema.get("additionalProperties") is False:
                problems.append(f"unexpected argument '{key}'")
            continue
        expected = prop.get("type")
        if isinstance(expected, list):
            if not any(_matches_type(value, t) for t in expected):
                problems.append(f"'{key}' must be one of types {expected}")
                continue
        elif expected and not _matches_type(value, expected):
            problems.append(f"'{key}' must be of type {expected}")
            continue
        if "enum" in prop and value not in prop["enum"]:
            problems.append(f"'{key}' must be one of {prop['enum']}")

    return problems


class Tool:
    """A named, schema-described capability."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Optional[Dict[str, Any]] = None,
        func: Optional[Callable] = None,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}, "required": []}
        self.func = func

    @classmethod
    def from_callable(
        cls,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "Tool":
        tool_name = name or callable_func.__name__
        schema = callable_to_tool_schema(callable_func, tool_name, description)
        return cls(tool_name, schema["description"], schema["parameters"], callable_func)

    def schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate(self, arguments: Any) -> List[str]:
        return validate_arguments(self.parameters, arguments)

    async def invoke(self, arguments: Dict[str, Any], context=None) -> Any:
        """Run the tool. Blocking callables run in a worker thread.

        Cancelling the returned awaitable (a timeout or a deleted call) stops
        waiting for a blocking callable but cannot stop its thread; the callable
        runs to completion and its result is dropped.
        """
        if self.func is None:
            raise NotImplementedError(f"Tool '{self.name}' has no implementation")
        if inspect.iscoroutinefunction(self.func):
            return await self.func(**arguments)
        return await asyncio.to_thread(self.func, **arguments)

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r})"


class ToolRegistry:
    """Registry for managing tools and their schemas."""

    def __init__(self, tools=None):
        self.tools: Dict[str, Tool] = {}  # name -> Tool, in registration order
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self.tools:
            raise ConfigurationError(f"Tool '{tool.name}' is already registered")
        self.tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def register_callable(
        self,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tool:
        """
        Register a callable (function or method) and auto-generate its tool schema.

        Args:
            callable_func: The callable to register
            name: Optional name override (defaults to callable name)
            description: Optional description
        """
        tool = Tool.from_callable(callable_func, name, description)
        self.register(tool)
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def get_schemas(self) -> List[Dict[str, Any]]:
        """Get all tool schemas in registration order."""
        return [tool.schema() for tool in self.tools.values()]

    def get_tool_names(self) -> List[str]:
        """Get list of registered tool names."""
        return list(self.tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self.tools

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __iter__(self):
        return iter(self.tools.values())

    def __len__(self) -> int:
        """Get number of registered tools."""
        return len(self.tools)
