from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from agent_runtime.runtime.messages import Message, Role, new_id, utc_now


@dataclass
class SessionStats:
    message_count: int = 0
    tool_call_count: int = 0
    iteration_count: int = 0


@dataclass
class Session:
    """
    Ordered conversation record for one thread.

    Only the AgentLoop mutates a session, and only while holding that session's
    turn lock. Messages are never rewritten or removed once appended.
    """

    id: str = field(default_factory=lambda: new_id("sess"))
    system_prompt: str = ""
    model_id: str = ""
    messages: List[Message] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    stats: SessionStats = field(default_factory=SessionStats)

    def add_message(self, message: Message) -> None:
        self.messages.append(message)
        self.stats.message_count += 1
        if message.role == Role.TOOL:
            self.stats.tool_call_count += 1
        self.updated_at = message.created_at

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def last_messages(self, n: Optional[int]) -> List[Message]:
        """
        The trailing window of at most n messages, never starting on a tool
        message whose assistant request fell outside the window. A limit below
        one means no limit.
        """
        if n is None or n < 1 or n >= len(self.messages):
            return list(self.messages)
        window = self.messages[len(self.messages) - n:]
        while window and window[0].role == Role.TOOL:
            window = window[1:]
        return list(window)

    def header(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "system_prompt": self.system_prompt,
            "model_id": self.model_id,
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.header()
        out["updated_at"] = self.updated_at
        out["stats"] = asdict(self.stats)
        out["messages"] = [m.to_dict() for m in self.messages]
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        session = cls(
            id=str(data["id"]),
            system_prompt=str(data.get("system_prompt") or ""),
            model_id=str(data.get("model_id") or ""),
            created_at=str(data.get("created_at") or utc_now()),
            metadata=dict(data.get("metadata") or {}),
        )
        for raw in data.get("messages") or []:
            session.add_message(Message.from_dict(raw))
        session.updated_at = str(data.get("updated_at") or session.updated_at)
        stats = data.get("stats")
        if isinstance(stats, dict):
            session.stats.iteration_count = int(stats.get("iteration_count", 0) or 0)
        return session
