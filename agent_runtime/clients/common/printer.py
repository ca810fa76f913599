from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from agent_runtime.runtime.events import (
    AgentEvent,
    TokenDelta,
    ToolCallRequested,
    ToolCallResultEvent,
    TurnCancelled,
    TurnCompleted,
    TurnFailed,
)
from agent_runtime.runtime.tools.confirmation import ConfirmationRequest


def _preview(value: Any, limit: int = 200) -> str:
    s = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return s if len(s) <= limit else s[:limit] + "…"


@dataclass
class Printer:
    """
    Terminal renderer for one turn's event stream.
    """

    console: Console = field(default_factory=Console)
    show_tools: bool = True
    _streaming: bool = False

    def header(self, title: str, subtitle: Optional[str] = None) -> None:
        text = Text()
        text.append(title, style="bold cyan")
        if subtitle:
            text.append(f"  {subtitle}", style="dim")
        self.console.print(Panel(text, border_style="cyan"))

    def user(self, text: str) -> None:
        self.console.print(f"[bold cyan]You:[/bold cyan] {text}")

    def _end_stream(self) -> None:
        if self._streaming:
            self.console.print()
            self._streaming = False

    def event(self, ev: AgentEvent) -> None:
        if isinstance(ev, TokenDelta):
            if not self._streaming:
                self.console.print("[bold magenta]Assistant:[/bold magenta] ", end="")
                self._streaming = True
            self.console.print(ev.text, end="", markup=False, highlight=False)
        elif isinstance(ev, ToolCallRequested) and self.show_tools and ev.request:
            self._end_stream()
            self.console.print(f"[dim]→ {ev.request.tool_name} {_preview(ev.request.arguments)}[/dim]")
        elif isinstance(ev, ToolCallResultEvent) and self.show_tools and ev.result:
            r = ev.result
            style = "green" if r.is_ok else ("yellow" if r.status == "denied" else "red")
            detail = _preview(r.payload) if r.is_ok else (r.error_message or "")
            self.console.print(f"[{style}]← {r.tool_name} {r.status}[/{style}] [dim]{detail}[/dim]")
        elif isinstance(ev, TurnCompleted):
            if not self._streaming and ev.message and ev.message.text:
                self.console.print("[bold magenta]Assistant:[/bold magenta] ", end="")
                self.console.print(ev.message.text, markup=False, highlight=False)
            self._end_stream()
        elif isinstance(ev, TurnFailed):
            self._end_stream()
            self.error(f"{ev.reason}: {ev.message}")
        elif isinstance(ev, TurnCancelled):
            self._end_stream()
            self.console.print("[yellow]cancelled[/yellow]")

    def confirmation(self, req: ConfirmationRequest) -> None:
        self._end_stream()
        self.console.print(f"\n[bold yellow]Permission required:[/bold yellow] {req.tool_name}")
        self.console.print("  [dim]arguments:[/dim] ", end="")
        self.console.print(_preview(req.arguments, 400), markup=False, highlight=False)

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")
