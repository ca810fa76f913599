from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import pytest

from agent_runtime import config
from agent_runtime.policy.policy import Policy
from agent_runtime.runtime.llm.provider import CompletionChunk, CompletionRequest
from agent_runtime.runtime.loop import AgentConfig, AgentLoop
from agent_runtime.runtime.messages import ToolCallRequest
from agent_runtime.runtime.storage import InMemorySessionStore
from agent_runtime.runtime.tools.executor import ToolExecutor
from agent_runtime.runtime.tools.registry import ToolDefinition, ToolRegistry
from agent_runtime.runtime.tools.sandbox import SandboxConfig


class ScriptedProvider:
    """
    Fake model: each complete() call replays the next script. A script is a list
    of chunks, or an exception raised before the first chunk.
    """

    def __init__(self, scripts: Sequence[Any]):
        self.scripts = list(scripts)
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest):
        self.requests.append(request)
        if not self.scripts:
            raise AssertionError("provider called more times than scripted")
        script = self.scripts.pop(0)
        if isinstance(script, BaseException):
            raise script
        for chunk in script:
            await asyncio.sleep(0)
            yield chunk


def text(*deltas: str) -> List[CompletionChunk]:
    return [CompletionChunk(delta=d) for d in deltas]


def calls(*requests: ToolCallRequest, delta: str = "") -> List[CompletionChunk]:
    return [CompletionChunk(delta=delta, tool_calls=tuple(requests))]


def call(call_id: str, name: str, **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, tool_name=name, arguments=arguments)


def add_tool() -> ToolDefinition:
    async def _add(args: Dict[str, Any], scope: Any) -> Any:
        return args["a"] + args["b"]

    return ToolDefinition(
        name="add",
        description="Add two numbers.",
        parameters={
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
        executor=_add,
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config file and data dir at the test's tmp dir."""
    monkeypatch.setenv("AGENT_RUNTIME_CONFIG", str(tmp_path / "agent_runtime.json"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    config.load_config.cache_clear()
    yield tmp_path / "agent_runtime.json"
    config.load_config.cache_clear()


@pytest.fixture
def sandbox(tmp_path) -> SandboxConfig:
    root = tmp_path / "work"
    root.mkdir()
    return SandboxConfig(root=str(root))


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def make_loop(store, sandbox):
    def _make(
        scripts: Sequence[Any],
        *,
        tools: Optional[Sequence[ToolDefinition]] = None,
        policy: Optional[Policy] = None,
        confirm=None,
        confirmation_timeout_s: Optional[float] = None,
        **agent: Any,
    ) -> AgentLoop:
        agent.setdefault("max_duration_s", 30.0)
        executor = ToolExecutor(
            policy=policy or Policy.auto_approve(),
            sandbox=sandbox,
            confirm=confirm,
            tool_timeout_s=5.0,
            confirmation_timeout_s=confirmation_timeout_s,
        )
        return AgentLoop(
            provider=ScriptedProvider(scripts),
            registry=ToolRegistry(tools if tools is not None else [add_tool()]),
            executor=executor,
            store=store,
            agent_config=AgentConfig(model="test-model", temperature=None, **agent),
        )

    return _make


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while not predicate():
        if loop.time() > end:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
