"""/help: command table, or the usage of one command."""

from __future__ import annotations

from typing import List

from ..slash_commands import SlashCommandContext, SlashCommand, render_help_table


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        table = render_help_table(context.router.commands())
        return f"{table}\nType /help <command> for details. /exit leaves the shell."

    name = args[0].lstrip("/")
    command = context.router.get(name)
    if command is None:
        return f"[help] No command named '/{name}'."
    if "help" in command.subcommands:
        return command.handler(context, ["help"])
    return f"{command.usage}\n  {command.description}"


COMMAND = SlashCommand(
    name="help",
    description="List commands, or show the usage of one.",
    handler=_handler,
)
