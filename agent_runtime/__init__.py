__version__ = "0.1.0"

from agent_runtime.runtime.budget import Budget, CancellationToken
from agent_runtime.runtime.loop import AgentConfig, AgentLoop, TurnResult
from agent_runtime.runtime.messages import Message
from agent_runtime.runtime.session import Session

__all__ = [
    "__version__",
    "AgentConfig",
    "AgentLoop",
    "Budget",
    "CancellationToken",
    "Message",
    "Session",
    "TurnResult",
]
