from __future__ import annotations

import logging
from typing import Optional

from agent_runtime import config
from agent_runtime.policy.policy import Policy
from agent_runtime.runtime.llm import LanguageModelProvider, OpenAIChatCompletionsProvider
from agent_runtime.runtime.loop import AgentConfig, AgentLoop
from agent_runtime.runtime.storage import JsonlSessionStore, SessionStore
from agent_runtime.runtime.tools.builtin import default_registry
from agent_runtime.runtime.tools.confirmation import ConfirmHandler
from agent_runtime.runtime.tools.executor import ToolExecutor
from agent_runtime.runtime.tools.registry import ToolRegistry
from agent_runtime.runtime.tools.sandbox import SandboxConfig

logger = logging.getLogger("agent_runtime.runtime")


def build_agent_loop(
    *,
    provider: Optional[LanguageModelProvider] = None,
    store: Optional[SessionStore] = None,
    registry: Optional[ToolRegistry] = None,
    policy: Optional[Policy] = None,
    sandbox: Optional[SandboxConfig] = None,
    confirm: Optional[ConfirmHandler] = None,
    agent_config: Optional[AgentConfig] = None,
) -> AgentLoop:
    """
    Wire an AgentLoop from the config file, overriding any collaborator passed in.
    The OpenAI provider is only constructed when no provider is given.
    """
    agent_config = agent_config or AgentConfig.from_config()
    registry = registry if registry is not None else default_registry()
    if not agent_config.tools_enabled:
        registry = ToolRegistry()
    executor = ToolExecutor(
        policy=policy or Policy.load(),
        sandbox=sandbox or SandboxConfig.from_config(),
        confirm=confirm,
        tool_timeout_s=config.tool_timeout_s(),
        confirmation_timeout_s=config.confirmation_timeout_s(),
    )
    loop = AgentLoop(
        provider=provider or OpenAIChatCompletionsProvider(),
        registry=registry,
        executor=executor,
        store=store or JsonlSessionStore(),
        agent_config=agent_config,
    )
    logger.debug("agent loop ready: model=%s tools=%s", agent_config.model, registry.names())
    return loop
