import io

import pytest
from rich.console import Console

from conftest import call, calls, text
from agent_runtime.clients.cli.main import build_parser, log_level, run_one_turn
from agent_runtime.clients.common.printer import Printer
from agent_runtime.errors import ProviderError
from agent_runtime.runtime.events import TurnCompleted, TurnFailed


def _printer(show_tools: bool = True):
    buf = io.StringIO()
    return Printer(console=Console(file=buf, width=120, color_system=None), show_tools=show_tools), buf


def test_log_level():
    assert log_level(0) == "WARNING"
    assert log_level(0, "ERROR") == "ERROR"
    assert log_level(1) == "INFO"
    assert log_level(3) == "DEBUG"


def test_parser():
    args = build_parser().parse_args(["-vv", "-m", "gpt-x", "run", "hello", "--session", "sess_1"])
    assert (args.command, args.message, args.session, args.model, args.verbose) == ("run", "hello", "sess_1", "gpt-x", 2)

    args = build_parser().parse_args(["serve", "-p", "8080"])
    assert (args.command, args.port, args.host) == ("serve", 8080, None)

    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.mark.asyncio
async def test_run_one_turn_prints_stream(make_loop):
    loop = make_loop([calls(call("c1", "add", a=2, b=2)), text("The answer ", "is 4")])
    session = await loop.get_or_create_session()
    printer, buf = _printer()

    final = await run_one_turn(loop, session, "2 + 2?", printer)

    assert isinstance(final, TurnCompleted)
    out = buf.getvalue()
    assert "→ add" in out
    assert "← add ok" in out
    assert "Assistant: The answer is 4" in out


@pytest.mark.asyncio
async def test_run_one_turn_reports_failure(make_loop):
    loop = make_loop([ProviderError("upstream down")])
    session = await loop.get_or_create_session()
    printer, buf = _printer(show_tools=False)

    final = await run_one_turn(loop, session, "hi", printer)

    assert isinstance(final, TurnFailed)
    assert "provider_error: upstream down" in buf.getvalue()
