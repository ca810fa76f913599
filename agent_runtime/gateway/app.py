import logging
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from agent_runtime import __version__
from agent_runtime.errors import Cancelled, SessionConflict, SessionNotFound, TurnFailedError
from agent_runtime.policy.policy import Decision, Policy
from agent_runtime.protocol import create_error, create_response, failure_status, sse_frame
from agent_runtime.runtime.loop import AgentLoop
from agent_runtime.runtime.runtime import build_agent_loop
from agent_runtime.runtime.session import Session
from agent_runtime.runtime.tools.confirmation import ConfirmationBroker

load_dotenv()

logger = logging.getLogger("agent_runtime.gateway")


class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    message: str


class ConfirmationDecision(BaseModel):
    decision: str = Decision.AUTO_DENY  # "allow" | "deny"
    remember: bool = False


class Gateway:
    """
    Thin HTTP adapter over one AgentLoop. Keeps the live Session objects so that
    consecutive turns on a session share state.
    """

    def __init__(self, loop: Optional[AgentLoop] = None, broker: Optional[ConfirmationBroker] = None):
        self.broker = broker or ConfirmationBroker()
        self.loop = loop or build_agent_loop(confirm=self.broker.ask)
        self._sessions: Dict[str, Session] = {}

    async def session(self, session_id: str) -> Session:
        s = self._sessions.get(session_id)
        if s is None:
            s = await self.loop.store.load(session_id)
            self._sessions[session_id] = s
        return s

    async def create_session(self, req: CreateSessionRequest) -> Session:
        if req.session_id and await self.loop.store.exists(req.session_id):
            raise SessionConflict(f"Session already exists: {req.session_id}")
        s = await self.loop.get_or_create_session(req.session_id, system_prompt=req.system_prompt, metadata=req.metadata)
        self._sessions[s.id] = s
        return s

    def remember(self, tool_name: str, decision: str) -> None:
        Policy.persist_decision(tool_name=tool_name, decision=decision)
        self.loop.executor.policy = Policy.load()


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    gateway = gateway or Gateway()
    app = FastAPI(title="Agent Runtime Gateway", version=__version__)
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def _session_or_404(session_id: str) -> Session:
        try:
            return await gateway.session(session_id)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/health")
    async def health():
        return {"ok": True, "version": __version__}

    @app.post("/sessions", status_code=201)
    async def create_session(req: CreateSessionRequest):
        try:
            s = await gateway.create_session(req)
        except SessionConflict as e:
            raise HTTPException(status_code=409, detail=str(e))
        return create_response(ok=True, payload=s.to_dict())

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        s = await _session_or_404(session_id)
        return create_response(ok=True, payload=s.to_dict())

    @app.post("/sessions/{session_id}/chat")
    async def chat(session_id: str, req: ChatRequest):
        s = await _session_or_404(session_id)
        try:
            result = await gateway.loop.run(s, req.message)
        except TurnFailedError as e:
            return JSONResponse(
                status_code=failure_status(e.reason),
                content=create_response(ok=False, error=create_error(e.reason, e.message, session_id=session_id)),
            )
        except Cancelled as e:
            return JSONResponse(
                status_code=409,
                content=create_response(ok=False, error=create_error("cancelled", str(e), session_id=session_id)),
            )
        payload = {
            "session_id": result.session_id,
            "turn_id": result.turn_id,
            "text": result.text,
            "message": result.message.to_dict() if result.message else None,
            "tool_calls": [asdict(r) for r in result.tool_calls],
            "iterations": result.iterations,
        }
        return create_response(ok=True, payload=payload)

    @app.post("/sessions/{session_id}/chat/stream")
    async def chat_stream(session_id: str, req: ChatRequest):
        s = await _session_or_404(session_id)
        handle = gateway.loop.start_turn(s, req.message)
        sub = handle.subscribe()

        async def event_generator() -> AsyncIterator[dict]:
            try:
                async for event in sub:
                    yield sse_frame(event)
            finally:
                if not handle.done:
                    logger.info("stream client went away, cancelling turn %s", handle.turn_id)
                    handle.cancel("client disconnected")
                sub.close()

        return EventSourceResponse(event_generator())

    @app.post("/sessions/{session_id}/cancel")
    async def cancel(session_id: str):
        await _session_or_404(session_id)
        n = gateway.loop.cancel_session(session_id, reason="cancelled by client")
        return create_response(ok=True, payload={"session_id": session_id, "cancelled_turns": n})

    @app.get("/confirmations")
    async def list_confirmations(session_id: Optional[str] = None):
        return create_response(ok=True, payload={"pending": [r.to_dict() for r in gateway.broker.pending(session_id=session_id)]})

    @app.post("/confirmations/{request_id}")
    async def respond_confirmation(request_id: str, body: ConfirmationDecision):
        pending = gateway.broker.get(request_id)
        decision = body.decision.strip().lower()
        if pending is None or not gateway.broker.respond(request_id, decision):
            raise HTTPException(status_code=404, detail="Unknown or expired confirmation request")
        if body.remember and decision in Decision.ALL:
            gateway.remember(pending.tool_name, decision)
        return create_response(ok=True, payload={"request_id": request_id, "decision": decision})

    return app
