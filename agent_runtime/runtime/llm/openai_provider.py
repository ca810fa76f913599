from __future__ import annotations

import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from agent_runtime import config
from agent_runtime.errors import ConfigError, ProviderError
from agent_runtime.runtime.llm.provider import CompletionChunk, CompletionRequest
from agent_runtime.runtime.messages import (
    AudioPart,
    FilePart,
    ImagePart,
    Message,
    Role,
    TextPart,
    ToolCallRequest,
    VideoPart,
)
from agent_runtime.runtime.tools.registry import to_openai_tool

logger = logging.getLogger("agent_runtime.llm")


def _user_content(message: Message) -> Any:
    """Plain string when the message is text only, content items otherwise."""
    if all(isinstance(p, TextPart) for p in message.parts):
        return message.text
    items: List[Dict[str, Any]] = []
    for p in message.parts:
        if isinstance(p, TextPart):
            items.append({"type": "text", "text": p.text})
        elif isinstance(p, ImagePart):
            items.append({"type": "image_url", "image_url": {"url": p.ref}})
        elif isinstance(p, AudioPart):
            label = f"[audio: {p.ref} ({p.media_type})]"
            if p.transcript:
                label += f" transcript: {p.transcript}"
            items.append({"type": "text", "text": label})
        elif isinstance(p, VideoPart):
            items.append({"type": "text", "text": f"[video: {p.ref} ({p.media_type})]"})
        elif isinstance(p, FilePart):
            items.append({"type": "text", "text": f"[file: {p.filename or p.ref} ({p.media_type})]"})
    return items


def to_openai_messages(request: CompletionRequest) -> List[Dict[str, Any]]:
    msgs: List[Dict[str, Any]] = []
    if request.system_prompt:
        msgs.append({"role": "system", "content": request.system_prompt})

    answered: Set[str] = {m.tool_call_id for m in request.messages if m.role == Role.TOOL and m.tool_call_id}
    requested: Set[str] = set()

    for m in request.messages:
        if m.role == Role.SYSTEM:
            msgs.append({"role": "system", "content": m.text})
        elif m.role == Role.USER:
            msgs.append({"role": "user", "content": _user_content(m)})
        elif m.role == Role.ASSISTANT:
            calls = [tc for tc in m.tool_calls if tc.id in answered]
            if not calls and not m.text:
                continue
            out: Dict[str, Any] = {"role": "assistant", "content": m.text or None}
            if calls:
                out["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.tool_name, "arguments": json.dumps(tc.arguments, ensure_ascii=False)},
                    }
                    for tc in calls
                ]
                requested.update(tc.id for tc in calls)
            msgs.append(out)
        elif m.role == Role.TOOL:
            # The API rejects tool messages without a preceding request.
            if m.tool_call_id not in requested:
                continue
            msgs.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.text})
    return msgs


def _parse_arguments(name: str, raw: str) -> Dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        args = json.loads(raw)
    except ValueError as e:
        raise ProviderError(f"Malformed arguments for tool call {name!r}: {e}") from e
    if not isinstance(args, dict):
        raise ProviderError(f"Arguments for tool call {name!r} must be a JSON object")
    return args


class OpenAIChatCompletionsProvider:
    """
    Streaming provider using OpenAI's Chat Completions API.

    Text deltas are yielded as they arrive; tool-call fragments are accumulated by
    index and yielded as one ordered batch when the stream ends.
    """

    def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, client: Any = None):
        if client is not None:
            self._client = client
            return

        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is not set")

        from openai import AsyncOpenAI  # type: ignore

        self._client = AsyncOpenAI(api_key=self.api_key, base_url=base_url or config.llm_base_url())

    async def complete(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        import openai  # type: ignore

        kwargs: Dict[str, Any] = {
            "model": request.model,
            "messages": to_openai_messages(request),
            "stream": True,
        }
        if request.tools:
            kwargs["tools"] = [to_openai_tool(s) for s in request.tools]
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens

        tool_calls_dict: Dict[int, Dict[str, Any]] = {}
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not getattr(chunk, "choices", None):
                    continue
                delta = chunk.choices[0].delta
                content = getattr(delta, "content", None)
                if content:
                    yield CompletionChunk(delta=content)

                for tc_chunk in getattr(delta, "tool_calls", None) or []:
                    idx = tc_chunk.index
                    acc = tool_calls_dict.setdefault(idx, {"id": None, "name": "", "arguments": ""})
                    if getattr(tc_chunk, "id", None):
                        acc["id"] = tc_chunk.id
                    fn = getattr(tc_chunk, "function", None)
                    if fn:
                        if getattr(fn, "name", None):
                            acc["name"] += fn.name
                        if getattr(fn, "arguments", None):
                            acc["arguments"] += fn.arguments or ""
        except openai.OpenAIError as e:
            logger.warning("openai request failed: %s", e)
            raise ProviderError(str(e)) from e

        if not tool_calls_dict:
            return

        calls: List[ToolCallRequest] = []
        for i in sorted(tool_calls_dict.keys()):
            acc = tool_calls_dict[i]
            if not acc["id"] or not acc["name"]:
                raise ProviderError(f"Incomplete tool call at index {i}")
            calls.append(
                ToolCallRequest(id=acc["id"], tool_name=acc["name"], arguments=_parse_arguments(acc["name"], acc["arguments"]))
            )
        yield CompletionChunk(tool_calls=tuple(calls))
