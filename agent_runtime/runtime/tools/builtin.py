from __future__ import annotations

from typing import Any, Dict, List

from agent_runtime.runtime.tools.filesystem import list_directory, read_file, search_files, write_file
from agent_runtime.runtime.tools.registry import ToolDefinition, ToolRegistry
from agent_runtime.runtime.tools.sandbox import ToolScope
from agent_runtime.runtime.tools.shell import execute_shell
from agent_runtime.runtime.tools.system import get_system_info
from agent_runtime.runtime.tools.web import http_request


def builtin_tools() -> List[ToolDefinition]:
    async def _read_file(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await read_file(scope, str(args["path"]), encoding=str(args.get("encoding") or "utf-8"))

    async def _write_file(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await write_file(scope, str(args["path"]), str(args["content"]), append=bool(args.get("append", False)))

    async def _list_directory(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await list_directory(scope, str(args["path"]), recursive=bool(args.get("recursive", False)))

    async def _search_files(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await search_files(scope, str(args["pattern"]), path=str(args.get("path") or "."))

    async def _execute_shell(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await execute_shell(
            scope,
            str(args["command"]),
            working_dir=args.get("working_dir"),
            timeout_ms=args.get("timeout_ms"),
            env=args.get("env"),
        )

    async def _http_request(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await http_request(
            scope,
            str(args["url"]),
            method=str(args.get("method") or "GET"),
            headers=args.get("headers"),
            body=args.get("body"),
            json=args.get("json"),
            timeout_ms=args.get("timeout_ms"),
        )

    async def _get_system_info(args: Dict[str, Any], scope: ToolScope) -> Any:
        return await get_system_info(scope)

    return [
        ToolDefinition(
            name="read_file",
            description="Read the contents of a text file within the sandbox root.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file"},
                    "encoding": {"type": "string", "description": "Text encoding", "default": "utf-8"},
                },
                "required": ["path"],
            },
            executor=_read_file,
        ),
        ToolDefinition(
            name="write_file",
            description="Write content to a file within the sandbox root (requires permission).",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file"},
                    "content": {"type": "string", "description": "Content to write"},
                    "append": {"type": "boolean", "description": "Append instead of overwrite", "default": False},
                },
                "required": ["path", "content"],
            },
            executor=_write_file,
            dangerous=True,
        ),
        ToolDefinition(
            name="list_directory",
            description="List the contents of a directory, sorted by name.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the directory"},
                    "recursive": {"type": "boolean", "description": "List recursively", "default": False},
                },
                "required": ["path"],
            },
            executor=_list_directory,
        ),
        ToolDefinition(
            name="search_files",
            description="Search for files matching a glob pattern (e.g. **/*.py).",
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Glob pattern to search for"},
                    "path": {"type": "string", "description": "Base path to search from", "default": "."},
                },
                "required": ["pattern"],
            },
            executor=_search_files,
        ),
        ToolDefinition(
            name="execute_shell",
            description="Execute a shell command (requires permission).",
            parameters={
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "Shell command to run"},
                    "working_dir": {"type": "string", "description": "Working directory"},
                    "timeout_ms": {"type": "integer", "description": "Timeout in milliseconds"},
                    "env": {"type": "object", "description": "Extra environment variables"},
                },
                "required": ["command"],
            },
            executor=_execute_shell,
            dangerous=True,
        ),
        ToolDefinition(
            name="http_request",
            description="Make an HTTP request.",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "URL to request"},
                    "method": {"type": "string", "description": "HTTP method (GET, POST, PUT, DELETE, PATCH, HEAD, OPTIONS)", "default": "GET"},
                    "headers": {"type": "object", "description": "Request headers"},
                    "body": {"type": "string", "description": "Raw request body"},
                    "json": {"description": "JSON request body (any JSON value)"},
                    "timeout_ms": {"type": "integer", "description": "Request timeout in milliseconds"},
                },
                "required": ["url"],
            },
            executor=_http_request,
            network=True,
        ),
        ToolDefinition(
            name="get_system_info",
            description="Get information about the current system.",
            parameters={"type": "object", "properties": {}},
            executor=_get_system_info,
        ),
    ]


def default_registry() -> ToolRegistry:
    return ToolRegistry(builtin_tools())
