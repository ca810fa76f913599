from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple, Union

from agent_runtime import config
from agent_runtime.errors import (
    AgentRuntimeError,
    Cancelled,
    DurationExceeded,
    FailureReason,
    IterationBudgetExceeded,
    ProviderError,
    SessionConflict,
    SessionNotFound,
    TurnFailedError,
    UnknownTool,
)
from agent_runtime.runtime.budget import Budget, CancellationToken, Deadline
from agent_runtime.runtime.events import (
    AgentEvent,
    EventStream,
    Subscription,
    TokenDelta,
    ToolCallRequested,
    ToolCallResultEvent,
    TurnCancelled,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
)
from agent_runtime.runtime.llm.provider import CompletionRequest, LanguageModelProvider
from agent_runtime.runtime.messages import Message, ToolCallRequest, ToolCallResult, new_id
from agent_runtime.runtime.session import Session
from agent_runtime.runtime.storage.session_store import SessionStore
from agent_runtime.runtime.tools.executor import ExecutionContext, ToolExecutor
from agent_runtime.runtime.tools.registry import ToolRegistry

logger = logging.getLogger("agent_runtime.loop")


class LoopState:
    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    OBSERVING = "observing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AgentConfig:
    name: str = "assistant"
    model: str = "gpt-4o-mini"
    system_prompt: str = ""
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = None
    max_iterations: int = 10
    max_duration_s: Optional[float] = 300.0
    max_context_messages: Optional[int] = None
    checkpoint_each_message: bool = True
    max_parallel_tools: int = 4
    confirmation_blocks_batch: bool = False
    tools_enabled: bool = True
    event_buffer: int = 256

    @classmethod
    def from_config(cls) -> "AgentConfig":
        return cls(
            name=config.agent_name(),
            model=config.llm_model_name(),
            system_prompt=config.agent_system_prompt(),
            temperature=config.llm_temperature(),
            max_tokens=config.llm_max_tokens(),
            max_iterations=config.agent_max_iterations(),
            max_duration_s=config.agent_max_duration_s(),
            max_context_messages=config.agent_max_context_messages(),
            checkpoint_each_message=config.agent_checkpoint_each_message(),
            max_parallel_tools=config.agent_max_parallel_tools(),
            confirmation_blocks_batch=config.agent_confirmation_blocks_batch(),
            tools_enabled=config.agent_tools_enabled(),
        )

    def budget(self, cancellation: Optional[CancellationToken] = None) -> Budget:
        return Budget(
            max_iterations=self.max_iterations,
            max_duration=self.max_duration_s,
            cancellation=cancellation or CancellationToken(),
        )


@dataclass
class ToolCallRecord:
    id: str
    name: str
    arguments: Dict[str, Any]
    status: str
    output: Any
    duration_ms: int = 0

    @property
    def is_error(self) -> bool:
        return self.status != "ok"

    @classmethod
    def from_result(cls, call: ToolCallRequest, result: ToolCallResult) -> "ToolCallRecord":
        return cls(
            id=call.id,
            name=call.tool_name,
            arguments=dict(call.arguments),
            status=result.status,
            output=result.payload if result.is_ok else result.error_message,
            duration_ms=result.duration_ms,
        )


@dataclass
class TurnResult:
    session_id: str
    turn_id: str
    text: str
    message: Optional[Message]
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0


class _StoreFailed(Exception):
    pass


class TurnHandle:
    """
    A running (or finished) turn. Subscribe before the first await after
    start_turn() to see every event of the turn.
    """

    def __init__(self, session: Session, budget: Budget, stream: EventStream):
        self.session = session
        self.budget = budget
        self.stream = stream
        self.state = LoopState.IDLE
        self.iterations = 0
        self.tool_calls: List[ToolCallRecord] = []
        self.final: Optional[AgentEvent] = None
        self.task: Optional[asyncio.Task] = None
        self._pending: List[Message] = []
        self._requests: Dict[str, ToolCallRequest] = {}

    @property
    def turn_id(self) -> str:
        return self.stream.turn_id

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def done(self) -> bool:
        return self.final is not None

    def cancel(self, reason: Optional[str] = None) -> None:
        self.budget.cancellation.cancel(reason)

    def subscribe(self) -> Subscription:
        return self.stream.subscribe()

    async def wait(self) -> AgentEvent:
        if self.task is None:
            raise RuntimeError(f"Turn {self.turn_id} was never started")
        await asyncio.shield(self.task)
        if self.final is None:
            raise RuntimeError(f"Turn {self.turn_id} ended without a final event")
        return self.final

    def result(self) -> TurnResult:
        message = self.final.message if isinstance(self.final, TurnCompleted) else None
        return TurnResult(
            session_id=self.session_id,
            turn_id=self.turn_id,
            text=message.text if message else "",
            message=message,
            tool_calls=list(self.tool_calls),
            iterations=self.iterations,
        )


class AgentLoop:
    """
    ReAct controller: model call, tool dispatch, observation, repeat.

    One turn per session at a time (per-session lock). Every turn publishes its
    progress on an EventStream that ends with exactly one of TurnCompleted,
    TurnFailed or TurnCancelled.
    """

    def __init__(
        self,
        *,
        provider: LanguageModelProvider,
        registry: ToolRegistry,
        executor: ToolExecutor,
        store: SessionStore,
        agent_config: Optional[AgentConfig] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.executor = executor
        self.store = store
        self.config = agent_config or AgentConfig.from_config()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._turns: Dict[str, TurnHandle] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def get_or_create_session(
        self,
        session_id: Optional[str] = None,
        *,
        system_prompt: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        if session_id and await self.store.exists(session_id):
            return await self.store.load(session_id)
        session = Session(
            id=session_id or new_id("sess"),
            system_prompt=self.config.system_prompt if system_prompt is None else system_prompt,
            model_id=self.config.model,
            metadata=dict(metadata or {}),
        )
        await self.store.create(session)
        logger.info("session created: %s", session.id)
        return session

    def active_turns(self, session_id: Optional[str] = None) -> List[TurnHandle]:
        return [t for t in self._turns.values() if session_id is None or t.session_id == session_id]

    def cancel_session(self, session_id: str, reason: Optional[str] = None) -> int:
        turns = self.active_turns(session_id)
        for t in turns:
            t.cancel(reason)
        return len(turns)

    def start_turn(
        self,
        session: Session,
        user_message: Union[Message, str],
        budget: Optional[Budget] = None,
    ) -> TurnHandle:
        msg = user_message if isinstance(user_message, Message) else Message.user(user_message)
        stream = EventStream(turn_id=new_id("turn"), session_id=session.id, max_buffer=self.config.event_buffer)
        handle = TurnHandle(session, budget or self.config.budget(), stream)
        self._turns[handle.turn_id] = handle
        handle.task = asyncio.ensure_future(self._drive(handle, msg))
        return handle

    async def run_turn(
        self,
        session: Session,
        user_message: Union[Message, str],
        budget: Optional[Budget] = None,
    ) -> AsyncIterator[AgentEvent]:
        """Yield the turn's events. Closing the iterator early cancels the turn."""
        handle = self.start_turn(session, user_message, budget)
        sub = handle.subscribe()
        try:
            async for event in sub:
                yield event
        finally:
            if not handle.done:
                handle.cancel("event consumer went away")
            sub.close()

    async def run(
        self,
        session: Session,
        user_message: Union[Message, str],
        budget: Optional[Budget] = None,
    ) -> TurnResult:
        handle = self.start_turn(session, user_message, budget)
        final = await handle.wait()
        if isinstance(final, TurnFailed):
            raise TurnFailedError(final.reason, final.message)
        if isinstance(final, TurnCancelled):
            raise Cancelled(f"turn {handle.turn_id} cancelled")
        return handle.result()

    async def chat(self, session: Session, message: Union[Message, str], budget: Optional[Budget] = None) -> str:
        return (await self.run(session, message, budget)).text

    # turn driver

    async def _drive(self, handle: TurnHandle, user_message: Message) -> None:
        session = handle.session
        try:
            async with self._lock(session.id):
                await handle.stream.publish(TurnStarted())
                logger.info("turn started: session=%s turn=%s", session.id, handle.turn_id)
                final = await self._run_to_terminal(handle, user_message)
                handle.state = {
                    TurnCompleted: LoopState.DONE,
                    TurnCancelled: LoopState.CANCELLED,
                }.get(type(final), LoopState.FAILED)
                handle.final = final
                await handle.stream.publish(final)
                logger.info(
                    "turn finished: session=%s turn=%s outcome=%s iterations=%d",
                    session.id,
                    handle.turn_id,
                    final.type,
                    handle.iterations,
                )
        except asyncio.CancelledError:
            handle.state = LoopState.CANCELLED
            if handle.final is None:
                handle.final = TurnCancelled()
                if not handle.stream.closed:
                    await handle.stream.publish(handle.final)
            raise
        finally:
            self._turns.pop(handle.turn_id, None)

    async def _run_to_terminal(self, handle: TurnHandle, user_message: Message) -> AgentEvent:
        deadline = Deadline(handle.budget.max_duration)
        try:
            await self._ensure_stored(handle.session)
            final: AgentEvent = await self._react(handle, user_message, deadline)
        except Cancelled:
            final = TurnCancelled()
        except IterationBudgetExceeded as e:
            final = TurnFailed(reason=FailureReason.ITERATION_BUDGET_EXCEEDED, message=str(e))
        except DurationExceeded as e:
            final = TurnFailed(reason=FailureReason.DURATION_EXCEEDED, message=str(e))
        except ProviderError as e:
            final = TurnFailed(reason=FailureReason.PROVIDER_ERROR, message=str(e))
        except _StoreFailed as e:
            final = TurnFailed(reason=FailureReason.STORE_ERROR, message=str(e))
        except Exception as e:
            logger.exception("turn crashed: session=%s turn=%s", handle.session_id, handle.turn_id)
            final = TurnFailed(reason=FailureReason.INTERNAL_ERROR, message=f"{type(e).__name__}: {e}")

        try:
            await self._flush(handle)
        except _StoreFailed as e:
            if not isinstance(final, TurnFailed):
                final = TurnFailed(reason=FailureReason.STORE_ERROR, message=str(e))
        return final

    async def _react(self, handle: TurnHandle, user_message: Message, deadline: Deadline) -> AgentEvent:
        session = handle.session
        budget = handle.budget
        cfg = self.config

        await self._append(handle, user_message)

        for iteration in range(1, budget.max_iterations + 1):
            self._check(handle, deadline)
            handle.state = LoopState.DISPATCHING
            handle.iterations = iteration
            session.stats.iteration_count += 1

            request = CompletionRequest(
                model=session.model_id or cfg.model,
                messages=session.last_messages(cfg.max_context_messages),
                system_prompt=session.system_prompt or cfg.system_prompt,
                tools=self.registry.schemas() if cfg.tools_enabled else [],
                temperature=cfg.temperature,
                max_tokens=cfg.max_tokens,
            )
            text, calls = await self._complete(handle, request, deadline)

            if not calls:
                handle.state = LoopState.FINALIZING
                answer = Message.assistant(text)
                await self._append(handle, answer)
                return TurnCompleted(message=answer)

            handle.state = LoopState.TOOL_PENDING
            await self._append(handle, Message.assistant(text, tool_calls=calls))
            for call in calls:
                await handle.stream.publish(ToolCallRequested(request=call))

            await self._dispatch(handle, calls, deadline)
            handle.state = LoopState.OBSERVING

        raise IterationBudgetExceeded(f"No final answer after {budget.max_iterations} iteration(s)")

    def _check(self, handle: TurnHandle, deadline: Deadline) -> None:
        if handle.budget.cancellation.cancelled:
            raise Cancelled(handle.budget.cancellation.reason or "cancelled")
        if deadline.expired:
            raise DurationExceeded(f"Turn exceeded {handle.budget.max_duration}s")

    async def _complete(
        self,
        handle: TurnHandle,
        request: CompletionRequest,
        deadline: Deadline,
    ) -> Tuple[str, List[ToolCallRequest]]:
        """
        Drain one provider response, publishing text deltas as they arrive. Each
        chunk is raced against cancellation and the turn deadline; losing the race
        aborts the provider call.
        """
        handle.state = LoopState.STREAMING
        text_parts: List[str] = []
        calls: List[ToolCallRequest] = []

        agen = self.provider.complete(request)
        it = agen.__aiter__()

        async def _next() -> Any:
            return await it.__anext__()

        cancelled = asyncio.ensure_future(handle.budget.cancellation.wait())
        try:
            while True:
                nxt = asyncio.ensure_future(_next())
                done, _ = await asyncio.wait(
                    {nxt, cancelled},
                    timeout=deadline.remaining(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if nxt not in done:
                    nxt.cancel()
                    await asyncio.wait({nxt})
                    self._check(handle, deadline)
                    raise DurationExceeded(f"Turn exceeded {handle.budget.max_duration}s")
                try:
                    chunk = nxt.result()
                except StopAsyncIteration:
                    break
                except (ProviderError, asyncio.CancelledError):
                    raise
                except Exception as e:
                    raise ProviderError(f"{type(e).__name__}: {e}") from e

                if chunk.delta:
                    text_parts.append(chunk.delta)
                    await handle.stream.publish(TokenDelta(text=chunk.delta))
                calls.extend(chunk.tool_calls)
        finally:
            cancelled.cancel()
            aclose = getattr(agen, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("provider stream close failed", exc_info=True)

        seen: Set[str] = set(handle._requests)
        for call in calls:
            if call.id in seen:
                raise ProviderError(f"Duplicate tool call id: {call.id}")
            seen.add(call.id)
            handle._requests[call.id] = call
        return "".join(text_parts), calls

    async def _dispatch(self, handle: TurnHandle, calls: List[ToolCallRequest], deadline: Deadline) -> None:
        """
        Execute one batch of tool calls and append the results in request order.

        Calls run concurrently (bounded by max_parallel_tools) unless
        confirmation_blocks_batch is set. On cancellation, calls that already
        finished are still recorded; calls cancelled before they started get no
        result.
        """
        ctx = ExecutionContext(
            session_id=handle.session_id,
            turn_id=handle.turn_id,
            cancellation=handle.budget.cancellation,
            deadline=deadline,
            slots=asyncio.Semaphore(max(1, self.config.max_parallel_tools)),
        )

        async def run_one(call: ToolCallRequest) -> ToolCallResult:
            try:
                tool = self.registry.get(call.tool_name)
            except UnknownTool as e:
                logger.warning("model requested unknown tool: %s", call.tool_name)
                return ToolCallResult.error(call, str(e))
            return await self.executor.execute(tool, call, ctx)

        cancelled = False
        if self.config.confirmation_blocks_batch:
            for call in calls:
                try:
                    result = await run_one(call)
                except Cancelled:
                    cancelled = True
                    break
                await self._observe(handle, call, result)
        else:
            tasks = [asyncio.ensure_future(run_one(c)) for c in calls]
            try:
                for call, task in zip(calls, tasks):
                    try:
                        result = await task
                    except Cancelled:
                        cancelled = True
                        continue
                    await self._observe(handle, call, result)
            except BaseException:
                for t in tasks:
                    t.cancel()
                raise

        if cancelled or handle.budget.cancellation.cancelled:
            raise Cancelled(handle.budget.cancellation.reason or "cancelled")
        if deadline.expired:
            raise DurationExceeded(f"Turn exceeded {handle.budget.max_duration}s")

    async def _observe(self, handle: TurnHandle, call: ToolCallRequest, result: ToolCallResult) -> None:
        await self._append(handle, Message.tool(result))
        handle.tool_calls.append(ToolCallRecord.from_result(call, result))
        await handle.stream.publish(ToolCallResultEvent(result=result))

    # persistence

    async def _ensure_stored(self, session: Session) -> None:
        try:
            if not await self.store.exists(session.id):
                await self.store.create(session)
        except (AgentRuntimeError, OSError) as e:
            raise _StoreFailed(f"Could not create session {session.id}: {e}") from e

    async def _append(self, handle: TurnHandle, message: Message) -> None:
        session = handle.session
        session.add_message(message)
        if not self.config.checkpoint_each_message:
            handle._pending.append(message)
            return
        await self._store_append(session.id, message, session.message_count - 1)

    async def _store_append(self, session_id: str, message: Message, expected_count: int) -> None:
        try:
            await self.store.append(session_id, message, expected_count=expected_count)
        except (SessionConflict, SessionNotFound, OSError) as e:
            logger.error("store append failed: session=%s %s", session_id, e)
            raise _StoreFailed(str(e)) from e

    async def _flush(self, handle: TurnHandle) -> None:
        session = handle.session
        base = session.message_count - len(handle._pending)
        while handle._pending:
            await self._store_append(session.id, handle._pending[0], base)
            handle._pending.pop(0)
            base += 1
        try:
            await self.store.save_stats(session.id, session.stats)
        except (AgentRuntimeError, OSError) as e:
            raise _StoreFailed(str(e)) from e
