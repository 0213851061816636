"""Slash command registry for the vaultsync shell.

Handlers receive a ``SlashCommandContext`` exposing the live runtime objects
(the in-memory document, the sync client, the checkpoint store and the
embedded API server) and return the text to print. Library errors raised by a
handler are turned into a one-line message by the router.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import StringIO
import logging
import shutil
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .configuration import ConfigurationBundle
from .errors import VaultSyncError
from .models import StorageState

if TYPE_CHECKING:
    from .api.server import SyncAPIServer
    from .checkpoints import LocalCheckpointStore
    from .sync.client import SyncClient

logger = logging.getLogger("vaultsync.commands")

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], str]


@dataclass
class SlashCommandContext:
    """What a handler can see and replace.

    ``metadata`` is owned by the app; the properties below are views onto its
    ``state``, ``client``, ``checkpoints`` and ``server`` keys, so a handler
    that swaps the document is visible to every later command.
    """

    config: ConfigurationBundle
    router: "CommandRouter"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> StorageState:
        state = self.metadata.get("state")
        if state is None:
            state = StorageState()
            self.metadata["state"] = state
        return state

    @state.setter
    def state(self, value: StorageState) -> None:
        self.metadata["state"] = value

    @property
    def client(self) -> Optional["SyncClient"]:
        return self.metadata.get("client")

    @client.setter
    def client(self, value: Optional["SyncClient"]) -> None:
        self.metadata["client"] = value

    @property
    def checkpoints(self) -> Optional["LocalCheckpointStore"]:
        return self.metadata.get("checkpoints")

    @checkpoints.setter
    def checkpoints(self, value: "LocalCheckpointStore") -> None:
        self.metadata["checkpoints"] = value

    @property
    def server(self) -> Optional["SyncAPIServer"]:
        return self.metadata.get("server")

    @server.setter
    def server(self, value: Optional["SyncAPIServer"]) -> None:
        self.metadata["server"] = value


@dataclass
class SlashCommand:
    name: str
    description: str
    handler: SlashCommandHandler
    subcommands: Sequence[str] = ()
    requires_ready: bool = False

    @property
    def usage(self) -> str:
        if not self.subcommands:
            return f"/{self.name}"
        return f"/{self.name} [{'|'.join(self.subcommands)}]"


class CommandRouter:
    """Registry + dispatcher for slash commands."""

    def __init__(
        self,
        config: ConfigurationBundle,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config = config
        self._commands: Dict[str, SlashCommand] = {}
        self.metadata = metadata if metadata is not None else {}

    def register(self, command: SlashCommand) -> None:
        key = command.name.lower()
        if key in self._commands:
            raise ValueError(f"Slash command '/{key}' is already registered")
        self._commands[key] = command

    def get(self, command_name: str) -> Optional[SlashCommand]:
        return self._commands.get(command_name.lower())

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._commands.keys())

    def commands(self) -> Sequence[SlashCommand]:
        return [self._commands[name] for name in self.command_names]

    def handle(self, command_name: str, args: List[str]) -> str:
        command = self.get(command_name)
        if command is None:
            return f"[router] Unknown command '/{command_name}'. Use /help to list commands."
        if command.requires_ready and self.config.status != "ready":
            return (
                f"[router] '/{command.name}' requires a ready configuration "
                f"(current status: {self.config.status})."
            )
        context = SlashCommandContext(config=self.config, router=self, metadata=self.metadata)
        try:
            return command.handler(context, args)
        except VaultSyncError as exc:
            logger.warning("/%s failed with %s", command.name, exc.code)
            return f"[{command.name}] {exc.message}"

    def completions(self, line: str) -> List[str]:
        """Candidates for the word being typed at the end of ``line``.

        ``line`` is the buffer without its leading slash. The first word
        completes to ``/command``; the second to that command's subcommands.
        """

        words = line.split(" ")
        if len(words) == 1:
            fragment = words[0].lower()
            return [f"/{name}" for name in self.command_names if name.startswith(fragment)]
        command = self.get(words[0])
        if command is None or len(words) > 2:
            return []
        return [sub for sub in command.subcommands if sub.startswith(words[1].lower())]


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    """Render a help table listing slash commands."""

    def _render(console: Console) -> None:
        table = Table(title="vaultsync commands", show_header=True, header_style="bold cyan")
        table.add_column("Usage", style="green", no_wrap=True)
        table.add_column("Description")
        for cmd in commands:
            table.add_row(Text(cmd.usage), cmd.description)
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Render to an ANSI string instead of the live terminal."""

    columns, lines = shutil.get_terminal_size(fallback=(80, 24))
    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        width=max(20, columns),
        height=max(10, lines),
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


__all__ = [
    "SlashCommand",
    "SlashCommandContext",
    "CommandRouter",
    "render_help_table",
    "render_rich",
]
