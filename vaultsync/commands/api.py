"""/api: run the sync server inside the shell process."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.table import Table

from ..api.server import APIServerState, SyncAPIServer
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    subcommand = args[0].lower() if args else "status"

    if subcommand == "start":
        return _start_server(context)
    elif subcommand == "stop":
        return _stop_server(context)
    elif subcommand == "status":
        return _show_status(context)
    elif subcommand == "help":
        return USAGE
    return f"[api] Unknown subcommand '{subcommand}'. Use /api help for usage."


def _start_server(context: SlashCommandContext) -> str:
    if context.server is None:
        context.server = SyncAPIServer(config_bundle=context.config)
    server = context.server

    if server.state is APIServerState.RUNNING:
        return f"[api] Server is already running at {server.url}"
    if server.start(blocking=False):
        return f"[api] Server started at {server.url}\nUse /api status to check server state"
    return f"[api] Failed to start server (state: {server.state.value})"


def _stop_server(context: SlashCommandContext) -> str:
    server = context.server
    if server is None or server.state is not APIServerState.RUNNING:
        return "[api] Server is not running"
    if server.stop():
        return "[api] Server stopped"
    return f"[api] Failed to stop server (state: {server.state.value})"


def _show_status(context: SlashCommandContext) -> str:
    server = context.server
    server_config = (context.config.merged or {}).get("server", {}) or {}

    def _render(console: Console) -> None:
        table = Table(title="API Server Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        if server is None:
            table.add_row("State", "not initialized")
        else:
            status = server.status()
            table.add_row("State", status["state"])
            table.add_row("URL", status["url"] or "-")

        table.add_row("", "")
        table.add_row("Listen", f"{server_config.get('host', '127.0.0.1')}:{server_config.get('port', 8000)}")
        table.add_row("Base path", str(server_config.get("base_path", "/sync")))
        table.add_row(
            "Write limit",
            f"{server_config.get('rate_limit_max', 3)} per {server_config.get('rate_limit_window', 3600)}s",
        )
        console.print(table)

    return render_rich(_render)


USAGE = """[api] Usage:
  /api [status]     Show server state and settings
  /api start        Start the sync server in the background
  /api stop         Stop the sync server

Endpoints (when running):
  GET  /health                  Health check
  GET  <base_path>/<identifier> Fetch the encrypted snapshot
  HEAD <base_path>/<identifier> Check existence and version
  POST <base_path>/<identifier> Store a snapshot (If-Match for versioning)"""


COMMAND = SlashCommand(
    name="api",
    description="Start, stop or inspect the embedded sync server.",
    handler=_handler,
    subcommands=("start", "stop", "status", "help"),
)
