"""/status: where the shell is pointed and what the document holds."""

from __future__ import annotations

from typing import Callable, Dict, List, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models import DATA_ITEM_LISTS
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

SECTIONS = ("info", "diagnostics", "document")
ALIASES = {"summary": "info", "diag": "diagnostics", "diags": "diagnostics", "state": "document"}
DEFAULT_MAX_ROWS = 5


def _parse_args(args: List[str]) -> Tuple[List[str], bool]:
    words = [ALIASES.get(arg.lower(), arg.lower()) for arg in args]
    show_all = any(word in {"--all", "-a", "all"} for word in words)
    requested = [section for section in SECTIONS if section in words]
    return requested or list(SECTIONS), show_all


def _grid() -> Table:
    grid = Table.grid(padding=(0, 1))
    grid.add_column("Key", style="bold", no_wrap=True)
    grid.add_column("Value", overflow="fold")
    return grid


def _render_info(context: SlashCommandContext, console: Console, _: bool) -> None:
    config = context.config
    client = context.client
    checkpoints = context.checkpoints

    info = _grid()
    info.add_row("Data dir", str(config.data_dir))
    info.add_row("Config", f"{config.status} ({len(config.files_loaded)} file(s))")
    info.add_row("Log path", str(config.log_path or "(not initialized)"))
    info.add_row("Checkpoints", str(checkpoints.directory) if checkpoints else "(none)")
    if client is None:
        info.add_row("Sync", "no server configured")
    elif client.is_configured():
        info.add_row("Sync", f"{client.settings.server_url} as {client.identifier[:8]}...")
    else:
        info.add_row("Sync", f"{client.settings.server_url} (credentials not derived)")
    console.print(Panel(info, title="Runtime Status", border_style="green", padding=(0, 1)))


def _render_diagnostics(context: SlashCommandContext, console: Console, show_all: bool) -> None:
    config = context.config
    if not config.diagnostics:
        console.print(Panel("[green]No diagnostics reported.", title="Diagnostics", border_style="red"))
        return

    table = Table(show_header=True, header_style="bold red", box=box.SIMPLE, pad_edge=False)
    table.add_column("Lvl", style="red", no_wrap=True)
    table.add_column("Message", overflow="fold", ratio=2)
    table.add_column("Source", overflow="fold", ratio=2)

    limit = len(config.diagnostics) if show_all else DEFAULT_MAX_ROWS
    for diag in config.diagnostics[:limit]:
        table.add_row(diag.level.upper(), diag.message, str(diag.source or config.data_dir))
    console.print(Panel(table, title="Diagnostics", border_style="red", padding=(0, 1)))

    hidden = len(config.diagnostics) - limit
    if hidden > 0:
        console.print(f"\n[dim]{hidden} more. Use '/status diagnostics --all' for the full list.[/dim]")


def _render_document(context: SlashCommandContext, console: Console, _: bool) -> None:
    state = context.state
    doc = _grid()
    doc.add_row("Timestamp", state.timestamp or "(unset)")
    for kind in DATA_ITEM_LISTS:
        doc.add_row(kind.capitalize(), str(len(state.human.items(kind))))
    doc.add_row("Quotes", str(len(state.human.quotes)))
    doc.add_row("Personas", str(len(state.personas)))
    doc.add_row("Queue", str(len(state.queue)))
    console.print(Panel(doc, title="Document", border_style="blue", padding=(0, 1)))


RENDERERS: Dict[str, Callable[[SlashCommandContext, Console, bool], None]] = {
    "info": _render_info,
    "diagnostics": _render_diagnostics,
    "document": _render_document,
}


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    sections, show_all = _parse_args(args)

    def _render(console: Console) -> None:
        for section in sections:
            RENDERERS[section](context, console, show_all)

    return render_rich(_render)


COMMAND = SlashCommand(
    name="status",
    description="Show data directory, configuration diagnostics and document counts.",
    handler=_handler,
    subcommands=SECTIONS,
)
