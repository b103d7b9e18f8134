"""Rich console panels for tool calls and server startup.

Everything prints to stderr: under the stdio transport stdout carries the MCP
protocol and must stay clean.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Console, Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

console = Console(stderr=True, soft_wrap=True)


@dataclass
class ToolCallContext:
    """Context information for a tool call."""

    tool_name: str
    kwargs: dict[str, Any]
    ship: Optional[str] = None
    addressee: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None
    result: Any = None
    error: Optional[str] = None
    success: bool = True
    _created_at: datetime = field(default_factory=datetime.now)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time else time.perf_counter()
        return (end - self.start_time) * 1000

    @property
    def timestamp(self) -> str:
        return self._created_at.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _safe_json_format(data: Any, max_length: int = 2000) -> str:
    """Format data as JSON with truncation."""
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _json_panel(title: str, data: Any, *, border_style: str) -> Panel:
    syntax = Syntax(
        _safe_json_format(data),
        "json",
        theme="monokai",
        line_numbers=False,
        word_wrap=True,
        background_color="default",
    )
    return Panel(syntax, title=f"[bold]{title}[/bold]", border_style=border_style, box=box.ROUNDED, padding=(0, 1))


def _duration_markup(duration_ms: float) -> str:
    if duration_ms < 100:
        style = "bold bright_green"
    elif duration_ms < 1000:
        style = "bold yellow"
    else:
        style = "bold red"
    return f"[{style}]{duration_ms:.2f}ms[/{style}]"


def _create_info_table(ctx: ToolCallContext) -> Table:
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1), show_edge=False)
    table.add_column("Key", style="bold bright_yellow", width=12)
    table.add_column("Value", style="white", overflow="fold")

    table.add_row("Tool", f"[bold bright_green]{ctx.tool_name}[/bold bright_green]")
    table.add_row("Timestamp", f"[dim]{ctx.timestamp}[/dim]")
    if ctx.ship:
        table.add_row("Ship", f"[bright_cyan]{escape(ctx.ship)}[/bright_cyan]")
    if ctx.addressee:
        table.add_row("Addressee", f"[bright_magenta]{escape(ctx.addressee)}[/bright_magenta]")
    if ctx.end_time:
        table.add_row("Duration", _duration_markup(ctx.duration_ms))
        if ctx.success:
            table.add_row("Status", "[bold bright_green]SUCCESS[/bold bright_green]")
        else:
            table.add_row("Status", "[bold bright_red]FAILED[/bold bright_red]")
    return table


def _build_start_panel(ctx: ToolCallContext) -> Panel:
    components: list[RenderableType] = [Rule(style="bright_blue"), _create_info_table(ctx)]
    if ctx.kwargs:
        components.append(_json_panel("Input Parameters", ctx.kwargs, border_style="bright_blue"))
    return Panel(
        Group(*components),
        title="[bold bright_white on bright_blue]MCP TOOL CALL STARTED[/bold bright_white on bright_blue]",
        border_style="bright_blue",
        box=box.DOUBLE,
        padding=(0, 1),
    )


def _build_end_panel(ctx: ToolCallContext) -> Panel:
    components: list[RenderableType] = [_create_info_table(ctx)]
    if ctx.success:
        components.append(_json_panel("Result", ctx.result, border_style="bright_green"))
        title = "[bold bright_white on bright_green]MCP TOOL CALL COMPLETED[/bold bright_white on bright_green]"
        border_style = "bright_green"
    else:
        components.append(_json_panel("Error", {"message": ctx.error}, border_style="bright_red"))
        title = "[bold bright_white on bright_red]MCP TOOL CALL FAILED[/bold bright_white on bright_red]"
        border_style = "bright_red"
    return Panel(Group(*components), title=title, border_style=border_style, box=box.DOUBLE, padding=(0, 1))


def log_tool_call_start(ctx: ToolCallContext) -> None:
    console.print(_build_start_panel(ctx))


def log_tool_call_end(ctx: ToolCallContext) -> None:
    if not ctx.end_time:
        ctx.end_time = time.perf_counter()
    console.print(_build_end_panel(ctx))


def log_error(message: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
    console.print(Text(message, style="bold bright_red"))
    details = dict(kwargs)
    if error is not None:
        details["error_type"] = type(error).__name__
        details["error_message"] = str(error)
    if details:
        console.print(_json_panel("Error Details", details, border_style="bright_red"))


def create_startup_panel(settings: Any, transport: str, endpoint: Optional[str] = None) -> Panel:
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1), show_edge=False)
    table.add_column("Key", style="bold bright_yellow", width=14)
    table.add_column("Value", style="white", overflow="fold")
    table.add_row("Ship", escape(settings.ship.identity))
    table.add_row("Ship URL", escape(settings.ship.url))
    table.add_row("Transport", transport)
    if endpoint:
        table.add_row("Endpoint", escape(endpoint))
    table.add_row("Environment", escape(settings.environment))
    table.add_row("Log level", escape(settings.log_level))
    return Panel(
        table,
        title="[bold bright_white]Tlon MCP Server[/bold bright_white]",
        border_style="bright_cyan",
        box=box.ROUNDED,
    )


def display_startup_banner(settings: Any, transport: str, endpoint: Optional[str] = None) -> None:
    console.print(create_startup_panel(settings, transport, endpoint))
