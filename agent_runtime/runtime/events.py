from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, ClassVar, Dict, List, Optional

from agent_runtime.runtime.messages import Message, ToolCallRequest, ToolCallResult

logger = logging.getLogger("agent_runtime.events")


@dataclass
class AgentEvent:
    type: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    turn_id: str = ""
    session_id: str = ""
    seq: int = -1

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "turn_id": self.turn_id,
            "session_id": self.session_id,
            "seq": self.seq,
            **self.payload(),
        }


@dataclass
class TurnStarted(AgentEvent):
    type: ClassVar[str] = "turn_started"


@dataclass
class TokenDelta(AgentEvent):
    type: ClassVar[str] = "token_delta"
    text: str = ""

    def payload(self) -> Dict[str, Any]:
        return {"text": self.text}


@dataclass
class ToolCallRequested(AgentEvent):
    type: ClassVar[str] = "tool_call_requested"
    request: Optional[ToolCallRequest] = None

    def payload(self) -> Dict[str, Any]:
        return {"request": self.request.to_dict() if self.request else None}


@dataclass
class ToolCallResultEvent(AgentEvent):
    type: ClassVar[str] = "tool_call_result"
    result: Optional[ToolCallResult] = None

    def payload(self) -> Dict[str, Any]:
        return {"result": self.result.to_dict() if self.result else None}


@dataclass
class TurnCompleted(AgentEvent):
    type: ClassVar[str] = "turn_completed"
    terminal: ClassVar[bool] = True
    message: Optional[Message] = None

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message.to_dict() if self.message else None}


@dataclass
class TurnFailed(AgentEvent):
    type: ClassVar[str] = "turn_failed"
    terminal: ClassVar[bool] = True
    reason: str = ""
    message: str = ""

    def payload(self) -> Dict[str, Any]:
        return {"reason": self.reason, "message": self.message}


@dataclass
class TurnCancelled(AgentEvent):
    type: ClassVar[str] = "turn_cancelled"
    terminal: ClassVar[bool] = True


_CLOSED = object()


class Subscription:
    """One consumer's view of an EventStream. Iterate it with ``async for``."""

    def __init__(self, stream: "EventStream", maxsize: int):
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._done = False

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self

    async def __anext__(self) -> AgentEvent:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            raise StopAsyncIteration
        if item.terminal:
            self._done = True
        return item

    async def _put(self, item: Any) -> None:
        await self._queue.put(item)

    def close(self) -> None:
        """Detach from the stream and drop anything still buffered."""
        self._done = True
        self._stream._subscribers.discard(self)
        while not self._queue.empty():
            self._queue.get_nowait()


class EventStream:
    """
    Ordered broadcast of one turn's events.

    Single producer, any number of subscribers. Each subscriber sees every event
    published after it subscribed, exactly once and in order. Subscriber queues
    are bounded: publish() waits until every live subscriber has room.
    """

    def __init__(self, *, turn_id: str, session_id: str, max_buffer: int = 256):
        self.turn_id = turn_id
        self.session_id = session_id
        self._max_buffer = max(1, int(max_buffer))
        self._subscribers: set[Subscription] = set()
        self._seq = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._max_buffer)
        if self._closed:
            sub._queue.put_nowait(_CLOSED)
        else:
            self._subscribers.add(sub)
        return sub

    async def publish(self, event: AgentEvent) -> AgentEvent:
        if self._closed:
            raise RuntimeError(f"Event stream for turn {self.turn_id} is closed")
        event.turn_id = self.turn_id
        event.session_id = self.session_id
        event.seq = self._seq
        self._seq += 1
        for sub in list(self._subscribers):
            if sub._done:
                continue
            await sub._put(event)
        if event.terminal:
            await self.close(notify=False)
        return event

    async def close(self, *, notify: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        subs: List[Subscription] = list(self._subscribers)
        self._subscribers.clear()
        if not notify:
            return
        for sub in subs:
            if not sub._done:
                await sub._put(_CLOSED)
        logger.debug("event stream closed: turn=%s events=%d", self.turn_id, self._seq)

