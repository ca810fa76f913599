from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from agent_runtime import config
from agent_runtime.errors import Cancelled, InvalidArguments, SandboxViolation, ToolExecutionError
from agent_runtime.policy.policy import Decision, Policy
from agent_runtime.runtime.budget import CancellationToken, Deadline
from agent_runtime.runtime.messages import ToolCallRequest, ToolCallResult
from agent_runtime.runtime.tools.confirmation import ConfirmationRequest, ConfirmHandler
from agent_runtime.runtime.tools.registry import Tool, validate_arguments
from agent_runtime.runtime.tools.sandbox import SandboxConfig

logger = logging.getLogger("agent_runtime.tools")


@dataclass
class ExecutionContext:
    session_id: str
    turn_id: str
    cancellation: CancellationToken
    deadline: Optional[Deadline] = None
    # Shared by the calls of one batch; only held while a tool actually runs.
    slots: Optional[asyncio.Semaphore] = None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ToolExecutor:
    """
    The only path from a ToolCallRequest to Tool.invoke.

    Every outcome except cancellation comes back as a ToolCallResult: denials are
    status=denied, tool failures (bad arguments, exceptions, timeouts, sandbox
    breaches) are status=error. Cancelled is raised when the turn is cancelled
    before the tool starts, including while waiting for a confirmation.
    """

    def __init__(
        self,
        *,
        policy: Optional[Policy] = None,
        sandbox: Optional[SandboxConfig] = None,
        confirm: Optional[ConfirmHandler] = None,
        tool_timeout_s: Optional[float] = None,
        confirmation_timeout_s: Optional[float] = None,
    ):
        self.policy = policy or Policy.load()
        self.sandbox = sandbox or SandboxConfig.from_config()
        self.confirm = confirm
        self.tool_timeout_s = tool_timeout_s if tool_timeout_s is not None else config.tool_timeout_s()
        self.confirmation_timeout_s = (
            confirmation_timeout_s if confirmation_timeout_s is not None else config.confirmation_timeout_s()
        )

    async def execute(self, tool: Tool, call: ToolCallRequest, ctx: ExecutionContext) -> ToolCallResult:
        if ctx.cancellation.cancelled:
            raise Cancelled(f"turn {ctx.turn_id} cancelled before {call.tool_name} started")

        try:
            validate_arguments(tool.parameters, call.arguments)
        except InvalidArguments as e:
            return ToolCallResult.error(call, f"Invalid arguments: {e}")

        if tool.dangerous:
            denied = await self._gate(tool, call, ctx)
            if denied is not None:
                return denied

        if ctx.slots is None:
            return await self._invoke(tool, call, ctx)
        async with ctx.slots:
            return await self._invoke(tool, call, ctx)

    async def _gate(self, tool: Tool, call: ToolCallRequest, ctx: ExecutionContext) -> Optional[ToolCallResult]:
        decision = self.policy.check(tool.name)
        if decision.decision == Decision.AUTO_APPROVE:
            return None
        if decision.decision == Decision.AUTO_DENY:
            logger.warning("denied by policy: tool=%s pattern=%s turn=%s", tool.name, decision.matched, ctx.turn_id)
            return ToolCallResult.denied(call, f"Denied by policy: {tool.name}")

        choice = await self._wait_for_confirmation(tool, call, ctx)
        if choice == Decision.AUTO_APPROVE:
            return None
        if choice is None:
            logger.warning("confirmation timed out: tool=%s turn=%s", tool.name, ctx.turn_id)
            return ToolCallResult.denied(call, f"Confirmation timed out: {tool.name}")
        logger.warning("denied by user: tool=%s turn=%s", tool.name, ctx.turn_id)
        return ToolCallResult.denied(call, f"Denied by user: {tool.name}")

    def _confirmation_timeout(self, ctx: ExecutionContext) -> Optional[float]:
        limits = [t for t in (self.confirmation_timeout_s, ctx.deadline.remaining() if ctx.deadline else None) if t is not None]
        return min(limits) if limits else None

    async def _wait_for_confirmation(self, tool: Tool, call: ToolCallRequest, ctx: ExecutionContext) -> Optional[str]:
        """
        Returns the user's choice, or None when the wait timed out. Raises
        Cancelled if the turn is cancelled first.
        """
        if self.confirm is None:
            return Decision.AUTO_DENY

        req = ConfirmationRequest(
            session_id=ctx.session_id,
            turn_id=ctx.turn_id,
            tool_call_id=call.id,
            tool_name=tool.name,
            arguments=dict(call.arguments),
        )
        answer = asyncio.ensure_future(self.confirm(req))
        cancelled = asyncio.ensure_future(ctx.cancellation.wait())
        try:
            done, _ = await asyncio.wait(
                {answer, cancelled},
                timeout=self._confirmation_timeout(ctx),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for t in (answer, cancelled):
                if not t.done():
                    t.cancel()

        if cancelled in done or ctx.cancellation.cancelled:
            raise Cancelled(f"turn {ctx.turn_id} cancelled while waiting for confirmation of {tool.name}")
        if answer not in done:
            return None
        if answer.exception() is not None:
            logger.warning("confirmation handler failed: %s", answer.exception())
            return Decision.AUTO_DENY
        return str(answer.result() or "").strip().lower()

    async def _invoke(self, tool: Tool, call: ToolCallRequest, ctx: ExecutionContext) -> ToolCallResult:
        if ctx.cancellation.cancelled:
            raise Cancelled(f"turn {ctx.turn_id} cancelled before {call.tool_name} started")

        scope = self.sandbox.scope_for(dangerous=tool.dangerous, network=tool.network, timeout_s=self.tool_timeout_s)
        started = time.monotonic()
        try:
            payload = await asyncio.wait_for(tool.invoke(dict(call.arguments), scope), timeout=self.tool_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("tool timed out: %s after %ss", tool.name, self.tool_timeout_s)
            return ToolCallResult.error(call, f"Tool timed out after {self.tool_timeout_s}s", _elapsed_ms(started))
        except SandboxViolation as e:
            logger.warning("sandbox violation: tool=%s %s", tool.name, e)
            return ToolCallResult.error(call, f"SandboxViolation: {e}", _elapsed_ms(started))
        except ToolExecutionError as e:
            return ToolCallResult.error(call, str(e), _elapsed_ms(started))
        except Exception as e:
            logger.exception("tool raised: %s", tool.name)
            return ToolCallResult.error(call, f"{type(e).__name__}: {e}", _elapsed_ms(started))

        result = ToolCallResult.ok(call, payload, _elapsed_ms(started))
        logger.info("tool ok: %s in %dms", tool.name, result.duration_ms)
        return result
