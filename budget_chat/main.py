"""
budget-chat v1.0.0: token-budgeted streaming chat for your terminal.

Commands: budget-chat chat | estimate | models
"""

import asyncio
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .budget import calculate_conversation_tokens, get_token_usage, should_optimize
from .config import Config
from .logger import setup_logger
from .messages import Message
from .rendering import render_usage
from .theme import ACCENT, BORDER, DIM, MUTED, SUCCESS, TEXT
from .tokenizer import estimate_tokens

console = Console()
BANNER = (
    f"[bold {ACCENT}]budget-chat[/bold {ACCENT}] "
    f"[dim]v{__version__} · token-budgeted chat[/dim]"
)


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="budget-chat")
@click.pass_context
def cli(ctx):
    """Streaming chat that stays inside the model's context budget."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.option("--model", "-m", default=None, help="Model preset name")
@click.option("--conversation", "-c", default=None, help="Conversation to open (id or title)")
@click.option("--project-dir", "-d", default=".", help="Directory to look for .chat.conf.yml in")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def chat(model, conversation, project_dir, verbose):
    """Start an interactive chat."""
    console.print(BANNER)
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = Config.load(project_dir)

    if model:
        if not config.set_active_model(model):
            console.print(f"[red]Error: unknown model '{model}'. "
                          f"Run `budget-chat models` to list them.[/red]")
            sys.exit(1)
    if verbose:
        config.verbose = True
    setup_logger(verbose=config.verbose, log_file=config.log_file)

    profile = config.get_profile()
    console.print(f"[{DIM}]model {profile.id} · soft limit {profile.soft_limit:,} tokens · "
                  f"Ctrl-C stops a reply, /help lists commands[/{DIM}]")

    from .chat_app import ChatApp

    app = ChatApp(config, console=console)
    try:
        asyncio.run(app.run(conversation))
    except KeyboardInterrupt:
        console.print(f"\n[{DIM}]Goodbye![/{DIM}]")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--model", "-m", default=None, help="Model preset name")
@click.option("--system-prompt", "-s", default=None, help="System prompt to account for")
def estimate(file, model, system_prompt):
    """Estimate the token cost of sending FILE as one message."""
    config = Config.load()
    setup_logger(verbose=config.verbose, log_file=False)
    profile = config.get_profile(model)
    text = file.read_text(encoding="utf-8", errors="replace")
    system_prompt = system_prompt or config.system_prompt

    message = Message.user(text)
    total = calculate_conversation_tokens([message], system_prompt)
    usage = get_token_usage(total, profile)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style=f"bold {ACCENT}", min_width=14)
    table.add_column("Value", style=TEXT)
    table.add_row("File", str(file))
    table.add_row("Characters", f"{len(text):,}")
    table.add_row("Text tokens", f"{estimate_tokens(text):,}")
    table.add_row("Request total", f"{total:,} (incl. system prompt and response reserve)")
    table.add_row("Model", f"{profile.id} (soft limit {profile.soft_limit:,})")
    table.add_row("Would reduce", "yes" if should_optimize([message], system_prompt, profile) else "no")
    console.print(Panel(table, title=f"[bold {ACCENT}] Estimate [/bold {ACCENT}]",
                        title_align="left", border_style=BORDER, padding=(0, 1)))
    console.print(render_usage(usage))


@cli.command()
def models():
    """List model profiles and their soft limits."""
    config = Config.load()
    table = Table(border_style=BORDER)
    table.add_column("", width=2)
    table.add_column("Name", style=f"bold {ACCENT}")
    table.add_column("Model", style=TEXT)
    table.add_column("Context", justify="right", style=DIM)
    table.add_column("Soft limit", justify="right", style=TEXT)
    table.add_column("Description", style=MUTED)
    for m in config.list_models():
        marker = f"[{SUCCESS}]●[/{SUCCESS}]" if m["active"] else " "
        table.add_row(marker, m["name"], m["model"], f"{m['context_window']:,}",
                      f"{m['soft_limit']:,}", m["description"])
    console.print(Panel(table, title=f"[bold {ACCENT}] Models [/bold {ACCENT}]",
                        title_align="left", border_style=BORDER))


if __name__ == "__main__":
    cli()
