from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Tuple

from agent_runtime.runtime.messages import Message, ToolCallRequest


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: Sequence[Message]
    system_prompt: str = ""
    tools: List[Dict[str, Any]] = field(default_factory=list)  # ToolRegistry.schemas()
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = True


@dataclass(frozen=True)
class CompletionChunk:
    """
    One piece of a model response: a text delta, a batch of tool-call requests,
    or both. A response yields at most one non-empty tool_calls batch.
    """

    delta: str = ""
    tool_calls: Tuple[ToolCallRequest, ...] = ()


class LanguageModelProvider(Protocol):
    def complete(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """
        Async generator over the response. Raise ProviderError for transport,
        timeout or malformed-output failures.
        """
        ...
