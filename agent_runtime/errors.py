from __future__ import annotations

from typing import Optional


class AgentRuntimeError(Exception):
    """Base class for every error raised by agent_runtime."""


class ConfigError(AgentRuntimeError):
    pass


class ProviderError(AgentRuntimeError):
    """The language model backend failed (transport, timeout, malformed output)."""


class UnknownTool(AgentRuntimeError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class DuplicateTool(AgentRuntimeError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"Tool already registered: {name}")
        self.name = name


class ToolExecutionError(AgentRuntimeError):
    """Tool-level failure. Reported back to the model as an error result."""


class InvalidArguments(ToolExecutionError):
    pass


class SandboxViolation(ToolExecutionError):
    pass


class Denied(AgentRuntimeError):
    pass


class Cancelled(AgentRuntimeError):
    pass


class IterationBudgetExceeded(AgentRuntimeError):
    pass


class DurationExceeded(AgentRuntimeError):
    pass


class SessionNotFound(AgentRuntimeError, LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionConflict(AgentRuntimeError):
    pass


class FailureReason:
    PROVIDER_ERROR = "provider_error"
    ITERATION_BUDGET_EXCEEDED = "iteration_budget_exceeded"
    DURATION_EXCEEDED = "duration_exceeded"
    STORE_ERROR = "store_error"
    INTERNAL_ERROR = "internal_error"


class TurnFailedError(AgentRuntimeError):
    """Raised by the draining helpers (chat/run) when a turn ends in TurnFailed."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(f"{reason}: {message}" if message else reason)
        self.reason = reason
        self.message = message or ""
