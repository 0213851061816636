"""
Interactive shell for the vaultsync runtime.

The shell owns the in-memory document, the checkpoint store and the sync
client, and exposes them to slash commands through the router metadata.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel

from .checkpoints import LocalCheckpointStore
from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
)
from .errors import VaultSyncError
from .logging_utils import setup_logging
from .models import StorageState
from .slash_commands import CommandRouter
from .sync import SyncClient, SyncSettings

REPO_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("vaultsync")
EXIT_WORDS = {"quit", "exit", "/quit", "/exit"}
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def print_banner(console: Console, config: ConfigurationBundle) -> None:
    """Show where the shell keeps its data and which server it talks to."""

    server_url = ((config.merged or {}).get("sync") or {}).get("server_url") or "(no server)"
    console.print(
        Panel.fit(
            f"[bold]vaultsync[/bold]  local first, end-to-end encrypted\n"
            f"[dim]data[/dim]   {config.data_dir}\n"
            f"[dim]server[/dim] {server_url}",
            border_style="cyan",
        )
    )


def _env_flag(name: str, default: Optional[bool]) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    return default


def _resolve_ui_verbose(config: ConfigurationBundle) -> bool:
    """``VAULTSYNC_UI_VERBOSE`` wins over ``ui.verbose``; both default to on."""

    configured = ((config.merged or {}).get("ui") or {}).get("verbose")
    flag = _env_flag("VAULTSYNC_UI_VERBOSE", None)
    if flag is not None:
        return flag
    return True if configured is None else bool(configured)


def build_runtime(config: ConfigurationBundle) -> Dict[str, Any]:
    """Create the objects slash commands operate on."""

    checkpoints = LocalCheckpointStore.from_config(config.data_dir, config.merged)
    state: Optional[StorageState] = None
    if checkpoints.is_available():
        state = checkpoints.load_newest()
    else:
        config.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Checkpoint directory '{checkpoints.directory}' is not writable.",
                source=checkpoints.directory,
            )
        )

    client: Optional[SyncClient] = None
    settings = SyncSettings.from_config(config.merged)
    if settings.server_url:
        client = SyncClient(settings)
        if settings.enabled and settings.credentials is not None:
            client.configure(settings.credentials)

    return {
        "repo_root": str(REPO_ROOT),
        "state": state or StorageState(),
        "checkpoints": checkpoints,
        "client": client,
        "server": None,
    }


def build_router(config: ConfigurationBundle, metadata: Optional[Dict[str, Any]] = None) -> CommandRouter:
    router = CommandRouter(config, metadata=metadata)
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(console: Console, config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    if not config.diagnostics:
        console.print(f"[config] Loaded {len(config.files_loaded)} file(s).", markup=False)
        return

    console.print("[config] Diagnostics:", markup=False)
    for diag in config.diagnostics:
        console.print(f"  - ({diag.level.upper()}) {diag.message} [{diag.source or config.data_dir}]", markup=False)


def configure_autocomplete(router: CommandRouter) -> None:
    """Tab-complete command names and their subcommands."""

    if readline is None:
        return

    def completer(_text: str, index: int):
        buffer = readline.get_line_buffer()
        if not buffer.startswith("/"):
            return None
        matches = router.completions(buffer[1:])
        return matches[index] if index < len(matches) else None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


def execute_cli_command(
    command_line: str,
    router: CommandRouter,
    history: List[str],
    *,
    suppress_output: bool = False,
) -> str:
    """Run one command line (without its slash) and record the command name."""

    parts = command_line.split()
    if not parts:
        return ""

    command, args = parts[0], parts[1:]
    result = router.handle(command, args)
    if not suppress_output:
        print(result)

    # Arguments may carry a passphrase
    history.append(command)
    logger.info("Executed CLI command: /%s", command)
    return result


def shutdown(router: CommandRouter) -> None:
    """Checkpoint the document and stop the embedded server."""

    metadata = router.metadata
    checkpoints = metadata.get("checkpoints")
    state = metadata.get("state")
    if checkpoints is not None and state is not None:
        try:
            checkpoints.save_auto_checkpoint(state)
        except VaultSyncError as e:
            print(f"[checkpoint] Could not save on exit: {e.message}")
    server = metadata.get("server")
    if server is not None and server.state.value == "running":
        server.stop()


def _start_logging(config: ConfigurationBundle) -> None:
    logging_config = (config.merged or {}).get("logging", {}) or {}
    level = (os.environ.get("VAULTSYNC_LOG_LEVEL") or logging_config.get("level") or "WARNING").upper()
    config.data_dir.mkdir(parents=True, exist_ok=True)
    log_path = setup_logging(
        config.data_dir,
        level,
        structured=bool(logging_config.get("structured", True)),
        console=False,
    )
    config.log_path = log_path
    if config.data_dir not in log_path.parents:
        config.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Data log directory is not writable; logging to fallback path '{log_path}'.",
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)


def main() -> None:
    """Entry point for `python -m vaultsync`."""

    console = Console()
    config = load_runtime_configuration()
    _start_logging(config)
    verbose = _resolve_ui_verbose(config)
    if verbose:
        print_banner(console, config)
    else:
        print("[vaultsync] ready (quiet mode)")

    try:
        runtime = build_runtime(config)
    except VaultSyncError as e:
        print(f"[vaultsync] {e.message}")
        return
    router = build_router(config, runtime)
    if verbose:
        emit_configuration_report(console, config)
    configure_autocomplete(router)
    history: List[str] = []

    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting vaultsync]")
            break

        if line.lower() in EXIT_WORDS:
            print("[Goodbye]")
            break
        if not line:
            continue
        if not line.startswith("/"):
            print("[vaultsync] Commands start with '/'. Try /help.")
            continue

        execute_cli_command(line[1:], router, history)

    shutdown(router)
