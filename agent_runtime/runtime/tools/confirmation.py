from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent_runtime.policy.policy import Decision
from agent_runtime.runtime.messages import new_id, utc_now

logger = logging.getLogger("agent_runtime.tools")


@dataclass(frozen=True)
class ConfirmationRequest:
    session_id: str
    turn_id: str
    tool_call_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: new_id("perm"))
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "session_id": self.session_id,
            "turn_id": self.turn_id,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
            "created_at": self.created_at,
        }


# Returns "allow" to run the call; anything else denies it.
ConfirmHandler = Callable[[ConfirmationRequest], Awaitable[str]]


class ConfirmationBroker:
    """
    Pending confirmations keyed by request id, answered from outside the turn
    (an HTTP client, a terminal prompt). Pass ``broker.ask`` as the executor's
    confirm handler.
    """

    def __init__(self):
        self._waiters: Dict[str, asyncio.Future[str]] = {}
        self._pending: Dict[str, ConfirmationRequest] = {}

    async def ask(self, request: ConfirmationRequest) -> str:
        fut: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters[request.request_id] = fut
        self._pending[request.request_id] = request
        logger.info("confirmation requested: %s tool=%s turn=%s", request.request_id, request.tool_name, request.turn_id)
        try:
            return await fut
        finally:
            self._waiters.pop(request.request_id, None)
            self._pending.pop(request.request_id, None)

    def pending(self, *, session_id: Optional[str] = None) -> List[ConfirmationRequest]:
        return [r for r in self._pending.values() if session_id is None or r.session_id == session_id]

    def get(self, request_id: str) -> Optional[ConfirmationRequest]:
        return self._pending.get(request_id)

    def respond(self, request_id: str, decision: str) -> bool:
        fut = self._waiters.get(request_id)
        if fut is None or fut.done():
            return False
        fut.set_result(decision if decision in Decision.ALL else Decision.AUTO_DENY)
        return True

    def deny_all(self, *, turn_id: Optional[str] = None) -> int:
        n = 0
        for request_id, req in list(self._pending.items()):
            if turn_id is not None and req.turn_id != turn_id:
                continue
            if self.respond(request_id, Decision.AUTO_DENY):
                n += 1
        return n
