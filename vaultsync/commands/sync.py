"""/sync: derive credentials and exchange the encrypted document with the server."""

from __future__ import annotations

from typing import List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from ..crypto import SyncCredentials
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..sync import ReconcileOutcome, SyncClient, SyncSettings, pull_and_merge, push_with_merge

NO_SERVER = "[sync] No server URL configured. Set sync.server_url in configuration."
NOT_CONFIGURED = "[sync] Not configured. Run /sync configure <username> <passphrase> first."


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    subcommand = args[0].lower() if args else "status"

    if subcommand == "status":
        return _show_status(context)
    elif subcommand == "configure":
        return _configure(context, args[1:])
    elif subcommand == "check":
        return _check_remote(context)
    elif subcommand == "push":
        return _push(context)
    elif subcommand == "pull":
        return _pull(context)
    elif subcommand == "clear":
        return _clear(context)
    elif subcommand == "help":
        return USAGE
    return f"[sync] Unknown subcommand '{subcommand}'. Use /sync help for usage."


def _sync_config(context: SlashCommandContext) -> dict:
    return (context.config.merged or {}).get("sync", {}) or {}


def _get_client(context: SlashCommandContext) -> Optional[SyncClient]:
    """The app's client, built from configuration on first use."""
    if context.client is None:
        settings = SyncSettings.from_config(context.config.merged)
        if settings.server_url:
            context.client = SyncClient(settings)
    return context.client


def _ready_client(context: SlashCommandContext) -> Tuple[Optional[SyncClient], Optional[str]]:
    client = _get_client(context)
    if client is None:
        return None, NO_SERVER
    if not client.is_configured():
        return None, NOT_CONFIGURED
    return client, None


def _configure(context: SlashCommandContext, args: List[str]) -> str:
    client = _get_client(context)
    if client is None:
        return NO_SERVER

    if len(args) == 1:
        return "[sync] Usage: /sync configure <username> <passphrase>"
    if args:
        credentials = SyncCredentials(username=args[0], passphrase=" ".join(args[1:]))
    else:
        credentials = client.settings.credentials
        if credentials is None:
            return (
                "[sync] No credentials given. Pass them to /sync configure or set "
                "VAULTSYNC_USERNAME and VAULTSYNC_PASSPHRASE."
            )

    try:
        client.configure(credentials)
    except ValueError as e:
        return f"[sync] Failed to derive credentials: {e}"
    return f"[sync] Configured. Identifier: {client.identifier[:8]}..."


def _show_status(context: SlashCommandContext) -> str:
    sync_config = _sync_config(context)
    client = context.client
    configured = bool(client and client.is_configured())

    def _render(console: Console) -> None:
        table = Table(title="Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Enabled", str(sync_config.get("enabled", False)))
        table.add_row("Server URL", sync_config.get("server_url") or "(not configured)")
        table.add_row("Timeout", f"{sync_config.get('timeout', 30)}s")
        table.add_row("Credentials", "derived" if configured else "(none)")
        if configured:
            table.add_row("Identifier", f"{client.identifier[:8]}...")
            etag = (client.last_known_etag or "").strip('"')
            table.add_row("Last ETag", f"{etag[:12]}..." if etag else "(none)")
        console.print(table)

    return render_rich(_render)


def _check_remote(context: SlashCommandContext) -> str:
    client, error = _ready_client(context)
    if error:
        return error

    remote = client.check_remote()
    if not remote.exists:
        return "[sync] No remote snapshot found (or server unreachable)."
    when = remote.last_modified.isoformat() if remote.last_modified else "(unknown)"
    return f"[sync] Remote snapshot exists. Last modified: {when}"


def _push(context: SlashCommandContext) -> str:
    client, error = _ready_client(context)
    if error:
        return error

    outcome = push_with_merge(client, context.state)
    _adopt(context, outcome)
    result = outcome.result
    if result.success:
        if outcome.merged:
            return f"[sync] Push completed.\n  Merged remote changes: {outcome.report.summary()}"
        return "[sync] Push completed."
    if result.retry_after:
        return f"[sync] Push failed: {result.error}. Retry in {result.retry_after}s."
    return f"[sync] Push failed: {result.error}"


def _pull(context: SlashCommandContext) -> str:
    client, error = _ready_client(context)
    if error:
        return error

    outcome = pull_and_merge(client, context.state)
    if not outcome.result.success:
        return f"[sync] Pull failed: {outcome.result.error}"
    if not outcome.merged:
        return "[sync] No remote snapshot yet. Local document unchanged."
    _adopt(context, outcome)
    return f"[sync] Pull completed: {outcome.report.summary()}"


def _adopt(context: SlashCommandContext, outcome: ReconcileOutcome) -> None:
    """Keep a merged document and checkpoint it."""
    if not outcome.merged:
        return
    context.state = outcome.state
    if context.checkpoints is not None:
        context.checkpoints.save_auto_checkpoint(outcome.state)


def _clear(context: SlashCommandContext) -> str:
    client = context.client
    if client is None or not client.is_configured():
        return "[sync] Nothing to clear."
    client.clear()
    return "[sync] Credentials cleared."


USAGE = """[sync] Usage:
  /sync [status]                      Show sync status
  /sync configure <user> <passphrase> Derive the key and identifier
  /sync configure                     Use VAULTSYNC_USERNAME / VAULTSYNC_PASSPHRASE
  /sync check                         Ask whether a remote snapshot exists
  /sync push                          Upload the document (merges on conflict)
  /sync pull                          Download and merge the remote document
  /sync clear                         Forget the derived key

Configuration (in <data_dir>/config/*.yml):
  sync:
    enabled: true
    server_url: http://sync-server:8000/sync
    timeout: 30"""


COMMAND = SlashCommand(
    name="sync",
    description="Encrypted snapshot sync with the server.",
    handler=_handler,
    subcommands=("status", "configure", "check", "push", "pull", "clear", "help"),
)
