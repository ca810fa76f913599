from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from agent_runtime.errors import DuplicateTool, InvalidArguments, UnknownTool

if TYPE_CHECKING:
    from agent_runtime.runtime.tools.sandbox import ToolScope


ToolFunction = Callable[[Dict[str, Any], "ToolScope"], Awaitable[Any]]


class Tool(Protocol):
    """
    Contract every tool satisfies. invoke() returns a JSON-serializable payload or
    raises ToolExecutionError; it must do all path/network access through scope.
    """

    name: str
    description: str
    parameters: Dict[str, Any]
    dangerous: bool
    network: bool

    async def invoke(self, arguments: Dict[str, Any], scope: "ToolScope") -> Any:
        ...


@dataclass(frozen=True)
class ToolDefinition:
    """
    name: function name exposed to the model (simple, no dots)
    dangerous: requires the policy gate before every invocation
    network: the tool declares it needs outbound network access
    """

    name: str
    description: str
    parameters: Dict[str, Any]  # JSON schema
    executor: ToolFunction
    dangerous: bool = False
    network: bool = False

    async def invoke(self, arguments: Dict[str, Any], scope: "ToolScope") -> Any:
        return await self.executor(arguments, scope)


def tool_schema(tool: Tool) -> Dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": tool.parameters,
        "dangerous": bool(tool.dangerous),
    }


def to_openai_tool(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": schema["name"],
            "description": schema["description"],
            "parameters": schema["parameters"],
        },
    }


_JSON_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "null": (type(None),),
}


def validate_arguments(schema: Dict[str, Any], arguments: Any) -> None:
    """
    Top-level check of tool arguments against an object schema: required keys and
    declared primitive types. Nested schemas are left to the tool.
    """
    if not isinstance(arguments, dict):
        raise InvalidArguments("arguments must be a JSON object")
    for key in schema.get("required") or []:
        if key not in arguments:
            raise InvalidArguments(f"missing required argument: {key}")
    props = schema.get("properties") or {}
    for key, value in arguments.items():
        spec = props.get(key)
        if not isinstance(spec, dict) or "type" not in spec:
            continue
        declared = spec["type"] if isinstance(spec["type"], list) else [spec["type"]]
        allowed: tuple = ()
        for t in declared:
            allowed += _JSON_TYPES.get(t, (object,))
        if isinstance(value, bool) and bool not in allowed:
            raise InvalidArguments(f"argument {key!r} must be {'/'.join(declared)}")
        if not isinstance(value, allowed):
            raise InvalidArguments(f"argument {key!r} must be {'/'.join(declared)}")
        if "enum" in spec and value not in spec["enum"]:
            raise InvalidArguments(f"argument {key!r} must be one of {spec['enum']}")


class ToolRegistry:
    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise DuplicateTool(tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> Optional[Tool]:
        return self._tools.pop(name, None)

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise UnknownTool(name)
        return self._tools[name]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools)

    def dangerous_tools(self) -> List[str]:
        return [n for n, t in self._tools.items() if t.dangerous]

    def safe_tools(self) -> List[str]:
        return [n for n, t in self._tools.items() if not t.dangerous]

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool_schema(t) for t in self._tools.values()]

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        return [to_openai_tool(s) for s in self.schemas()]
