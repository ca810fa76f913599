from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory

from agent_runtime import __version__, config
from agent_runtime.clients.common.printer import Printer
from agent_runtime.errors import AgentRuntimeError
from agent_runtime.policy.policy import Decision, Policy
from agent_runtime.runtime.events import AgentEvent, TurnCompleted, TurnFailed
from agent_runtime.runtime.loop import AgentConfig, AgentLoop
from agent_runtime.runtime.runtime import build_agent_loop
from agent_runtime.runtime.session import Session
from agent_runtime.runtime.tools.confirmation import ConfirmationRequest, ConfirmHandler
from agent_runtime.runtime.tools.executor import ToolExecutor


def log_level(verbose: int, default: str = "WARNING") -> str:
    if verbose <= 0:
        return default
    return "INFO" if verbose == 1 else "DEBUG"


def terminal_confirm(printer: Printer, prompt: PromptSession, executor: ToolExecutor) -> ConfirmHandler:
    """
    Ask on the terminal: y = allow once, a = always allow (persisted to the
    config file), anything else denies.
    """

    async def _confirm(req: ConfirmationRequest) -> str:
        printer.confirmation(req)
        answer = (await prompt.prompt_async("Allow? [y/N/a=always] ")).strip().lower()
        if answer in ("a", "always"):
            Policy.persist_decision(tool_name=req.tool_name, decision=Decision.AUTO_APPROVE)
            executor.policy = Policy.load()
            return Decision.AUTO_APPROVE
        if answer in ("y", "yes"):
            return Decision.AUTO_APPROVE
        return Decision.AUTO_DENY

    return _confirm


async def run_one_turn(loop: AgentLoop, session: Session, text: str, printer: Printer) -> AgentEvent:
    handle = loop.start_turn(session, text)
    sub = handle.subscribe()
    try:
        async for ev in sub:
            printer.event(ev)
    except asyncio.CancelledError:
        handle.cancel("interrupted")
        raise
    return await handle.wait()


def _agent_config(args: argparse.Namespace) -> AgentConfig:
    cfg = AgentConfig.from_config()
    if args.model:
        cfg.model = args.model
    if getattr(args, "system", None):
        cfg.system_prompt = args.system
    return cfg


async def chat(args: argparse.Namespace) -> int:
    printer = Printer()
    prompt: PromptSession = PromptSession(history=FileHistory(str(Path.home() / ".agent_runtime_history")))
    loop = build_agent_loop(agent_config=_agent_config(args))
    loop.executor.confirm = terminal_confirm(printer, prompt, loop.executor)
    session = await loop.get_or_create_session(args.session)

    printer.header("agent_runtime", f"v{__version__}  session {session.id}")
    printer.console.print("[dim]Type /quit to exit[/dim]\n")

    while True:
        try:
            line = (await prompt.prompt_async("> ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        if line.lower() in ("/quit", "/exit", "quit", "exit"):
            break
        await run_one_turn(loop, session, line, printer)
    printer.console.print("[dim]Goodbye![/dim]")
    return 0


async def run(args: argparse.Namespace) -> int:
    printer = Printer(show_tools=args.verbose > 0)
    prompt: PromptSession = PromptSession()
    loop = build_agent_loop(agent_config=_agent_config(args))
    loop.executor.confirm = terminal_confirm(printer, prompt, loop.executor)
    session = await loop.get_or_create_session(args.session)
    final = await run_one_turn(loop, session, args.message, printer)
    if isinstance(final, TurnCompleted):
        return 0
    if isinstance(final, TurnFailed):
        return 1
    return 130


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from agent_runtime.gateway.app import create_app

    host = args.host or config.gateway_host()
    port = args.port or config.gateway_port()
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level(args.verbose, config.log_level()).lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-runtime", description="Conversational agent runtime")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", help="Path to agent_runtime.json")
    parser.add_argument("-m", "--model", help="Model name (overrides llm.model_name)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    sub = parser.add_subparsers(dest="command", required=True)

    p_chat = sub.add_parser("chat", help="Start an interactive chat session")
    p_chat.add_argument("-s", "--system", help="System prompt for the agent")
    p_chat.add_argument("--session", help="Resume (or create) a session with this id")

    p_run = sub.add_parser("run", help="Run a single message and exit")
    p_run.add_argument("message")
    p_run.add_argument("-s", "--system", help="System prompt for the agent")
    p_run.add_argument("--session", help="Session id to append to")

    p_serve = sub.add_parser("serve", help="Start the HTTP gateway")
    p_serve.add_argument("--host", help="Host to bind to")
    p_serve.add_argument("-p", "--port", type=int, help="Port to bind to")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    if args.config:
        os.environ["AGENT_RUNTIME_CONFIG"] = args.config
        config.load_config.cache_clear()
    default = config.log_level() if args.command == "serve" else "WARNING"
    logging.basicConfig(level=log_level(args.verbose, default), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if args.command == "serve":
            return serve(args)
        if args.command == "chat":
            return asyncio.run(chat(args))
        return asyncio.run(run(args))
    except AgentRuntimeError as e:
        Printer().error(str(e))
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
