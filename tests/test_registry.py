import pytest

from agent_runtime.errors import DuplicateTool, InvalidArguments, UnknownTool
from agent_runtime.runtime.tools.builtin import builtin_tools, default_registry
from agent_runtime.runtime.tools.registry import ToolDefinition, ToolRegistry, validate_arguments


def test_builtin_registry():
    reg = default_registry()
    assert reg.names() == [
        "read_file",
        "write_file",
        "list_directory",
        "search_files",
        "execute_shell",
        "http_request",
        "get_system_info",
    ]
    assert reg.dangerous_tools() == ["write_file", "execute_shell"]
    assert "read_file" in reg.safe_tools()
    assert reg.get("http_request").network


def test_duplicate_registration_keeps_first():
    reg = default_registry()
    first = reg.get("search_files")

    async def _other(args, scope):
        return []

    with pytest.raises(DuplicateTool):
        reg.register(ToolDefinition(name="search_files", description="imposter", parameters={}, executor=_other))

    assert reg.get("search_files") is first
    assert len(reg) == len(builtin_tools())


def test_unknown_tool():
    reg = ToolRegistry()
    with pytest.raises(UnknownTool) as exc:
        reg.get("missing")
    assert str(exc.value) == "Unknown tool: missing"
    assert "missing" not in reg


def test_unregister():
    reg = default_registry()
    assert reg.unregister("execute_shell") is not None
    assert reg.unregister("execute_shell") is None
    assert "execute_shell" not in reg.names()


def test_schemas_and_openai_format():
    reg = default_registry()
    schema = reg.schemas()[1]
    assert schema["name"] == "write_file"
    assert schema["dangerous"] is True
    assert schema["parameters"]["required"] == ["path", "content"]

    fn = reg.to_openai_tools()[0]
    assert fn["type"] == "function"
    assert fn["function"]["name"] == "read_file"
    assert "dangerous" not in fn["function"]


SCHEMA = {
    "type": "object",
    "properties": {
        "count": {"type": "integer"},
        "ratio": {"type": "number"},
        "mode": {"type": "string", "enum": ["fast", "slow"]},
        "anything": {"description": "no type"},
    },
    "required": ["count"],
}


def test_validate_arguments_accepts_valid():
    validate_arguments(SCHEMA, {"count": 1, "ratio": 2, "mode": "fast", "anything": [1], "extra": True})


@pytest.mark.parametrize(
    "args",
    [
        [],
        {},
        {"count": "1"},
        {"count": True},
        {"count": 1, "ratio": "high"},
        {"count": 1, "mode": "medium"},
    ],
)
def test_validate_arguments_rejects(args):
    with pytest.raises(InvalidArguments):
        validate_arguments(SCHEMA, args)
