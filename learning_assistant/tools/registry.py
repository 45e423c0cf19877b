"""Registry for safe tool registration and execution."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError, create_model

from learning_assistant.db import Database
from learning_assistant.tools.base import Tool


class UnknownToolError(LookupError):
    """Raised when a tool name is not registered."""


class ToolRegistry:
    """Explicit registry of safe tools, built once at startup."""

    def __init__(self, db: Database, confirm_tools: frozenset[str] = frozenset()) -> None:
        self._db = db
        self._confirm_tools = confirm_tools
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, tool_name: str) -> Tool | None:
        return self._tools.get(tool_name)

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._tools

    def requires_confirmation(self, tool_name: str) -> bool:
        """True when calls to the tool must wait for an external decision."""

        tool = self._tools.get(tool_name)
        if tool is None:
            return False
        return tool.requires_confirmation or tool_name in self._confirm_tools

    def is_auto_execute(self, tool_name: str) -> bool:
        return tool_name in self._tools and not self.requires_confirmation(tool_name)

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.parameters_schema,
            }
            for tool in self._tools.values()
        ]

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(self, conversation_id: str, tool_name: str, arguments: dict[str, Any]) -> Any:
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownToolError(f"Unknown tool: {tool_name}")

        validated = _validate_json_schema(tool.parameters_schema, arguments)
        try:
            result = await tool.run(conversation_id=conversation_id, **validated)
        except Exception as exc:  # noqa: BLE001
            self._db.log_tool_execution(conversation_id, tool_name, validated, {"error": str(exc)}, succeeded=False)
            raise
        self._db.log_tool_execution(conversation_id, tool_name, validated, result, succeeded=True)
        return result


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            default = ...
        else:
            default = config.get("default")
        fields[name] = (typ, default)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
