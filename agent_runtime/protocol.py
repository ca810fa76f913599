from __future__ import annotations

import json
from typing import Any, Dict, Optional

from agent_runtime.errors import FailureReason
from agent_runtime.runtime.events import AgentEvent


class EventType:
    TURN_STARTED = "turn_started"
    TOKEN_DELTA = "token_delta"
    TOOL_CALL_REQUESTED = "tool_call_requested"
    TOOL_CALL_RESULT = "tool_call_result"
    TURN_COMPLETED = "turn_completed"
    TURN_FAILED = "turn_failed"
    TURN_CANCELLED = "turn_cancelled"

    TERMINAL = (TURN_COMPLETED, TURN_FAILED, TURN_CANCELLED)


_FAILURE_STATUS = {
    FailureReason.PROVIDER_ERROR: 502,
    FailureReason.ITERATION_BUDGET_EXCEEDED: 422,
    FailureReason.DURATION_EXCEEDED: 504,
    FailureReason.STORE_ERROR: 503,
    FailureReason.INTERNAL_ERROR: 500,
}


def create_response(
    *,
    ok: bool,
    payload: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
) -> dict:
    return {"ok": ok, "payload": payload, "error": error}


def failure_status(reason: str) -> int:
    return _FAILURE_STATUS.get(reason, 500)


def create_error(reason: str, message: str = "", **extra: Any) -> dict:
    return {"reason": reason, "message": message, **extra}


def sse_frame(event: AgentEvent) -> dict:
    """One server-sent event per AgentEvent; the data is the event unaltered."""
    return {"event": event.type, "id": str(event.seq), "data": json.dumps(event.to_dict(), ensure_ascii=False)}
