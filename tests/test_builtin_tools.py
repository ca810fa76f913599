import json
import sys

import httpx
import pytest

from agent_runtime.errors import SandboxViolation, ToolExecutionError
from agent_runtime.runtime.tools.filesystem import list_directory, read_file, search_files, write_file
from agent_runtime.runtime.tools.shell import execute_shell
from agent_runtime.runtime.tools.system import get_system_info
from agent_runtime.runtime.tools.web import USER_AGENT, http_request
from agent_runtime.runtime.tools.sandbox import ToolScope


@pytest.fixture
def scope(tmp_path) -> ToolScope:
    return ToolScope(root=tmp_path.resolve(), allow_network=True, allow_shell=True, timeout_s=5.0)


@pytest.mark.asyncio
async def test_write_then_read(scope):
    out = await write_file(scope, "notes/todo.txt", "buy milk\n")
    assert out["bytes_written"] == 9
    assert out["append"] is False

    await write_file(scope, "notes/todo.txt", "walk dog\n", append=True)

    assert await read_file(scope, "notes/todo.txt") == "buy milk\nwalk dog\n"


@pytest.mark.asyncio
async def test_read_errors(scope):
    with pytest.raises(ToolExecutionError, match="File not found"):
        await read_file(scope, "missing.txt")

    (scope.root / "big.txt").write_text("0123456789")
    scope.max_file_size = 4
    with pytest.raises(ToolExecutionError, match="File too large"):
        await read_file(scope, "big.txt")

    with pytest.raises(SandboxViolation):
        await read_file(scope, "../elsewhere.txt")


@pytest.mark.asyncio
async def test_list_directory_sorted(scope):
    for name in ("b.txt", "a.txt"):
        (scope.root / name).write_text("x")
    (scope.root / "sub").mkdir()
    (scope.root / "sub" / "c.txt").write_text("xyz")

    flat = await list_directory(scope, ".")
    assert [e["name"] for e in flat] == ["a.txt", "b.txt", "sub"]
    assert flat[2]["is_dir"] is True and flat[2]["size"] is None

    deep = await list_directory(scope, ".", recursive=True)
    assert [e["name"] for e in deep] == ["a.txt", "b.txt", "c.txt", "sub"]
    assert next(e for e in deep if e["name"] == "c.txt")["size"] == 3


@pytest.mark.asyncio
async def test_search_files(scope):
    (scope.root / "pkg").mkdir()
    (scope.root / "pkg" / "mod.py").write_text("")
    (scope.root / "top.py").write_text("")
    (scope.root / "readme.md").write_text("")

    found = await search_files(scope, "**/*.py")

    assert found == sorted([str(scope.root / "pkg" / "mod.py"), str(scope.root / "top.py")])
    with pytest.raises(ToolExecutionError):
        await search_files(scope, "")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_execute_shell(scope):
    out = await execute_shell(scope, "echo hello")
    assert out == {"exit_code": 0, "stdout": "hello\n", "stderr": "", "success": True}

    out = await execute_shell(scope, "echo $GREETING", env={"GREETING": "hi"})
    assert out["stdout"] == "hi\n"

    (scope.root / "sub").mkdir()
    out = await execute_shell(scope, "pwd", working_dir="sub")
    assert out["stdout"].strip().endswith("sub")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_execute_shell_failures(scope):
    with pytest.raises(ToolExecutionError) as exc:
        await execute_shell(scope, "echo oops >&2; exit 3")
    detail = json.loads(str(exc.value))
    assert detail["exit_code"] == 3
    assert detail["stderr"] == "oops\n"
    assert detail["success"] is False

    with pytest.raises(ToolExecutionError, match="timed out after 100ms"):
        await execute_shell(scope, "exec sleep 5", timeout_ms=100)

    scope.allow_shell = False
    with pytest.raises(SandboxViolation):
        await execute_shell(scope, "echo no")


@pytest.mark.asyncio
async def test_http_request(scope):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True}, headers={"X-Test": "1"})

    out = await http_request(
        scope,
        "https://api.example.com/items",
        method="post",
        json={"name": "widget"},
        headers={"Authorization": "Bearer t"},
        transport=httpx.MockTransport(handler),
    )

    assert out["status"] == 200
    assert out["status_text"] == "OK"
    assert json.loads(out["body"]) == {"ok": True}
    assert out["headers"]["x-test"] == "1"
    req = seen[0]
    assert req.method == "POST"
    assert json.loads(req.content) == {"name": "widget"}
    assert req.headers["user-agent"] == USER_AGENT
    assert req.headers["authorization"] == "Bearer t"


@pytest.mark.asyncio
async def test_http_error_status_is_tool_error(scope):
    transport = httpx.MockTransport(lambda request: httpx.Response(404, text="nope"))

    with pytest.raises(ToolExecutionError) as exc:
        await http_request(scope, "https://api.example.com/missing", transport=transport)

    detail = json.loads(str(exc.value))
    assert detail["status"] == 404
    assert detail["body"] == "nope"


@pytest.mark.asyncio
async def test_http_request_is_confined(scope):
    transport = httpx.MockTransport(lambda request: httpx.Response(200))
    scope.allow_network = False
    with pytest.raises(SandboxViolation):
        await http_request(scope, "https://api.example.com/", transport=transport)

    scope.allow_network = True
    with pytest.raises(ToolExecutionError, match="Unsupported HTTP method"):
        await http_request(scope, "https://api.example.com/", method="TRACE", transport=transport)


@pytest.mark.asyncio
async def test_http_redirect_is_confined(scope):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        if request.url.host == "good.example":
            return httpx.Response(302, headers={"Location": "http://evil.example/secret"})
        return httpx.Response(200, text="secret")

    scope.allowed_hosts = ["good.example"]
    scope.denied_hosts = ["evil.example"]
    with pytest.raises(SandboxViolation, match="evil.example"):
        await http_request(scope, "http://good.example/start", transport=httpx.MockTransport(handler))

    assert seen == ["good.example"]


@pytest.mark.asyncio
async def test_system_info(scope):
    info = await get_system_info(scope)
    assert set(info) == {"os", "process", "env"}
    assert info["process"]["current_dir"] == str(scope.root)
    assert info["os"]["name"] == sys.platform
