from types import SimpleNamespace

import openai
import pytest

from agent_runtime.errors import ConfigError, ProviderError
from agent_runtime.runtime.llm import CompletionRequest, OpenAIChatCompletionsProvider
from agent_runtime.runtime.llm.openai_provider import to_openai_messages
from agent_runtime.runtime.messages import ImagePart, Message, TextPart, ToolCallRequest, ToolCallResult
from agent_runtime.runtime.tools.builtin import default_registry


def _chunk(content=None, tool_calls=None):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])


def _tc(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeCompletions:
    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error

        async def stream():
            for c in self.chunks:
                yield c

        return stream()


def provider_with(completions: FakeCompletions) -> OpenAIChatCompletionsProvider:
    return OpenAIChatCompletionsProvider(client=SimpleNamespace(chat=SimpleNamespace(completions=completions)))


async def _drain(provider, request):
    return [c async for c in provider.complete(request)]


REQUEST = CompletionRequest(model="gpt-test", messages=[Message.user("hi")], system_prompt="be brief")


@pytest.mark.asyncio
async def test_streams_text():
    fake = FakeCompletions([_chunk("Hel"), _chunk("lo"), SimpleNamespace(choices=[])])

    chunks = await _drain(provider_with(fake), REQUEST)

    assert [c.delta for c in chunks] == ["Hel", "lo"]
    assert fake.kwargs["model"] == "gpt-test"
    assert fake.kwargs["stream"] is True
    assert fake.kwargs["messages"][0] == {"role": "system", "content": "be brief"}
    assert "tools" not in fake.kwargs
    assert "temperature" not in fake.kwargs


@pytest.mark.asyncio
async def test_accumulates_tool_call_fragments():
    fake = FakeCompletions(
        [
            _chunk(tool_calls=[_tc(0, id="call_a", name="read_file", arguments='{"pa')]),
            _chunk(tool_calls=[_tc(1, id="call_b", name="list_directory", arguments='{"path": "."}')]),
            _chunk(tool_calls=[_tc(0, arguments='th": "a.txt"}')]),
        ]
    )
    request = CompletionRequest(model="m", messages=[Message.user("x")], tools=default_registry().schemas(), temperature=0.2)

    chunks = await _drain(provider_with(fake), request)

    assert len(chunks) == 1
    assert chunks[0].tool_calls == (
        ToolCallRequest(id="call_a", tool_name="read_file", arguments={"path": "a.txt"}),
        ToolCallRequest(id="call_b", tool_name="list_directory", arguments={"path": "."}),
    )
    assert fake.kwargs["tools"][0]["function"]["name"] == "read_file"
    assert fake.kwargs["temperature"] == 0.2


@pytest.mark.asyncio
@pytest.mark.parametrize("arguments", ['{"path": ', '["a.txt"]'])
async def test_bad_tool_arguments(arguments):
    fake = FakeCompletions([_chunk(tool_calls=[_tc(0, id="c", name="read_file", arguments=arguments)])])
    with pytest.raises(ProviderError):
        await _drain(provider_with(fake), REQUEST)


@pytest.mark.asyncio
async def test_incomplete_tool_call():
    fake = FakeCompletions([_chunk(tool_calls=[_tc(0, name="read_file", arguments="{}")])])
    with pytest.raises(ProviderError, match="Incomplete tool call"):
        await _drain(provider_with(fake), REQUEST)


@pytest.mark.asyncio
async def test_openai_errors_become_provider_errors():
    fake = FakeCompletions(error=openai.OpenAIError("rate limited"))
    with pytest.raises(ProviderError, match="rate limited"):
        await _drain(provider_with(fake), REQUEST)


def test_missing_api_key():
    with pytest.raises(ConfigError):
        OpenAIChatCompletionsProvider()


def test_message_conversion():
    answered = ToolCallRequest(id="c1", tool_name="read_file", arguments={"path": "a"})
    orphan = ToolCallRequest(id="c2", tool_name="read_file", arguments={"path": "b"})
    messages = [
        Message.user([TextPart("look"), ImagePart(ref="https://img/1.png")]),
        Message.assistant("", tool_calls=[answered, orphan]),
        Message.tool(ToolCallResult.ok(answered, "contents")),
        Message.tool(ToolCallResult.ok(ToolCallRequest(id="c9", tool_name="x"), "stray")),
        Message.assistant("done"),
    ]

    out = to_openai_messages(CompletionRequest(model="m", messages=messages))

    assert out[0] == {
        "role": "user",
        "content": [{"type": "text", "text": "look"}, {"type": "image_url", "image_url": {"url": "https://img/1.png"}}],
    }
    assert out[1]["role"] == "assistant"
    assert [tc["id"] for tc in out[1]["tool_calls"]] == ["c1"]
    assert out[1]["tool_calls"][0]["function"] == {"name": "read_file", "arguments": '{"path": "a"}'}
    assert out[2] == {"role": "tool", "tool_call_id": "c1", "content": "contents"}
    assert out[3] == {"role": "assistant", "content": "done"}
    assert len(out) == 4
