"""Slash-command routing and handlers."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .budget import compute_usage
from .rendering import render_usage
from .theme import ACCENT, BORDER, DIM, MUTED, SUCCESS, TEXT, WARN

if TYPE_CHECKING:
    from .chat_app import ChatApp

SLASH_COMMANDS = ["/usage", "/new", "/switch", "/list", "/history", "/help", "/quit"]
_SLASH_ALIASES = {"/h": "/help", "/?": "/help", "/exit": "/quit", "/q": "/quit"}


@dataclass
class CommandContext:
    console: Console
    app: "ChatApp"


CommandHandler = Callable[[CommandContext, list[str]], str]


def _resolve_command(raw_cmd: str) -> str:
    """Resolve abbreviated slash commands via exact/alias/prefix matching."""
    cmd = raw_cmd.lower()
    if cmd in SLASH_COMMANDS:
        return cmd
    if cmd in _SLASH_ALIASES:
        return _SLASH_ALIASES[cmd]

    matches = [candidate for candidate in SLASH_COMMANDS if candidate.startswith(cmd)]
    if len(matches) == 1:
        return matches[0]
    return cmd


def handle_command(command: str, *, console: Console, app: "ChatApp") -> str:
    """Handle one slash command string; returns ``"quit"`` to leave the REPL."""
    parts = command.split()
    if not parts:
        return ""

    cmd = _resolve_command(parts[0])
    args = parts[1:]

    handler = COMMAND_HANDLERS.get(cmd)
    if not handler:
        console.print(f"  [{WARN}]Unknown: {cmd}. Try /help[/{WARN}]")
        return ""
    return handler(CommandContext(console=console, app=app), args)


def _cmd_quit(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    ctx.console.print(f"[{DIM}]Goodbye![/{DIM}]")
    return "quit"


def _cmd_help(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Command", style=f"bold {ACCENT}")
    table.add_column("Description", style=MUTED)
    table.add_row("/usage", "Show token usage for the current conversation")
    table.add_row("/new", "Start a new conversation")
    table.add_row("/switch NAME", "Switch to (or create) conversation NAME")
    table.add_row("/list", "List conversations")
    table.add_row("/history [SCROLL]", "Show the transcript window at row SCROLL (default: bottom)")
    table.add_row("/quit", "Exit")
    ctx.console.print(table)
    return ""


def _cmd_usage(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    app = ctx.app
    state = app.active
    usage = compute_usage(state.messages, app.config.system_prompt, state.draft, app.profile)
    app.usage[state.conversation_id] = usage
    ctx.console.print(Panel(render_usage(usage),
                            title=f"[bold {ACCENT}] {app.title_of(state.conversation_id)} [/bold {ACCENT}]",
                            title_align="left", border_style=BORDER, padding=(0, 1)))
    return ""


def _cmd_new(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    state = ctx.app.new_conversation()
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] New conversation [bold]{state.conversation_id}[/bold]")
    return ""


def _cmd_switch(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        ctx.console.print(f"  [{WARN}]Usage: /switch NAME[/{WARN}]")
        return ""
    name = " ".join(args)
    state = ctx.app.switch(name)
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Switched to [bold]{ctx.app.title_of(state.conversation_id)}[/bold] "
                      f"[{DIM}]({len(state.messages)} messages)[/{DIM}]")
    return ""


def _cmd_list(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    app = ctx.app
    table = Table(border_style=BORDER)
    table.add_column("", width=2)
    table.add_column("Name", style=f"bold {ACCENT}")
    table.add_column("Title", style=TEXT)
    table.add_column("Messages", justify="right", style=DIM)
    table.add_column("Saved", style=DIM)

    rows = {conv.id: conv for conv in app.saved}
    for conversation_id in app.registry.ids():
        rows.setdefault(conversation_id, None)

    for conversation_id, conv in rows.items():
        state = app.registry.get(conversation_id)
        if conversation_id == app.registry.active_id:
            marker = f"[{SUCCESS}]●[/{SUCCESS}]"
        elif state is not None and state.streaming:
            marker = f"[{WARN}]⋯[/{WARN}]"
        else:
            marker = " "
        count = len(state.messages) if state is not None else len(conv.messages)
        saved_at = (datetime.datetime.fromtimestamp(conv.timestamp).strftime("%Y-%m-%d %H:%M")
                    if conv is not None else "unsaved")
        table.add_row(marker, conversation_id, conv.title if conv is not None else "", str(count), saved_at)

    ctx.console.print(Panel(table, title=f"[bold {ACCENT}] Conversations [/bold {ACCENT}]",
                            title_align="left", border_style=BORDER))
    return ""


def _cmd_history(ctx: CommandContext, args: list[str]) -> str:
    app = ctx.app
    state = app.active
    count = state.item_count()
    state.view.resize(app.container_height())
    if args:
        try:
            scroll_top = float(args[0])
        except ValueError:
            ctx.console.print(f"  [{WARN}]SCROLL must be a number of rows[/{WARN}]")
            return ""
        state.view.on_scroll(scroll_top)
        ctx.console.print(app.transcript.render(state))
    else:
        ctx.console.print(app.transcript.render(state, follow=True))

    window = state.view.window(count)
    if count:
        ctx.console.print(f"  [{DIM}]items {window.start_index + 1}-{window.end_index + 1} of {count} · "
                          f"row {state.view.scroll_top:.0f} of {window.total_pixels:.0f}[/{DIM}]")
    else:
        ctx.console.print(f"  [{DIM}]No messages yet.[/{DIM}]")
    return ""


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/usage": _cmd_usage,
    "/new": _cmd_new,
    "/switch": _cmd_switch,
    "/list": _cmd_list,
    "/history": _cmd_history,
    "/help": _cmd_help,
    "/quit": _cmd_quit,
}
