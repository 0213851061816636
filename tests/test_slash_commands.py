"""Unit tests for the slash command router."""

from __future__ import annotations

from pathlib import Path

import pytest

from vaultsync.app import build_router
from vaultsync.configuration import ConfigurationBundle
from vaultsync.errors import StorageError
from vaultsync.models import StorageState
from vaultsync.slash_commands import (
    CommandRouter,
    SlashCommand,
    SlashCommandContext,
    render_help_table,
    render_rich,
)


def _config(tmp_path: Path, status: str = "ready") -> ConfigurationBundle:
    return ConfigurationBundle(data_dir=tmp_path, status=status)


def test_router_passes_args_and_context(tmp_path: Path):
    config = _config(tmp_path)
    router = CommandRouter(config)
    captured = {}

    def handler(context: SlashCommandContext, args: list) -> str:
        captured["context"] = context
        return f"echo:{' '.join(args)}"

    router.register(SlashCommand(name="Echo", description="Echo args", handler=handler))

    assert router.handle("echo", ["hello", "world"]) == "echo:hello world"
    assert captured["context"].config is config
    assert router.command_names == ["echo"]


def test_duplicate_registration_is_rejected(tmp_path: Path):
    router = CommandRouter(_config(tmp_path))
    router.register(SlashCommand(name="x", description="", handler=lambda *_: ""))

    with pytest.raises(ValueError):
        router.register(SlashCommand(name="X", description="", handler=lambda *_: ""))


def test_unknown_command_points_to_help(tmp_path: Path):
    assert "/help" in CommandRouter(_config(tmp_path)).handle("nope", [])


def test_requires_ready_guard(tmp_path: Path):
    router = CommandRouter(_config(tmp_path, status="missing"))
    router.register(SlashCommand(name="needs", description="", handler=lambda *_: "ok", requires_ready=True))

    assert "requires a ready configuration" in router.handle("needs", [])


def test_library_errors_become_messages(tmp_path: Path):
    def handler(*_):
        raise StorageError("Disk quota exceeded writing autosaves.json")

    router = CommandRouter(_config(tmp_path))
    router.register(SlashCommand(name="save", description="", handler=handler))

    assert router.handle("save", []) == "[save] Disk quota exceeded writing autosaves.json"


def test_context_properties_write_through_to_metadata(tmp_path: Path):
    metadata = {}
    router = CommandRouter(_config(tmp_path), metadata=metadata)
    replacement = StorageState(timestamp="2024-01-01T00:00:00.000Z")

    seen = []

    def swap(context: SlashCommandContext, _: list) -> str:
        seen.append(context.state)
        context.state = replacement
        return "ok"

    router.register(SlashCommand(name="swap", description="", handler=swap))
    assert "state" not in metadata

    router.handle("swap", [])
    assert isinstance(seen[0], StorageState)
    assert seen[0] is not replacement
    assert metadata["state"] is replacement

    router.handle("swap", [])
    assert seen[1] is replacement


def test_completions(tmp_path: Path):
    router = build_router(_config(tmp_path), {})

    assert router.completions("s") == ["/status", "/sync"]
    assert router.completions("sync pu") == ["push", "pull"]
    assert router.completions("sync push extra") == []
    assert router.completions("nope x") == []


def test_render_help_table_shows_usage(tmp_path: Path):
    router = CommandRouter(_config(tmp_path))
    router.register(
        SlashCommand(name="sync", description="Sync things", handler=lambda *_: "", subcommands=("push", "pull"))
    )

    output = render_help_table(router.commands())

    assert "/sync [push|pull]" in output
    assert "Sync things" in output


def test_render_rich_produces_ansi():
    def _render(console):
        console.print("hello", style="bold red")

    assert "\x1b[" in render_rich(_render)


def test_app_router_registers_all_commands(tmp_path: Path):
    router = build_router(_config(tmp_path))

    assert list(router.command_names) == ["api", "checkpoint", "help", "status", "sync"]
    assert "/checkpoint" in router.handle("help", [])


def test_help_for_one_command(tmp_path: Path):
    router = build_router(_config(tmp_path), {})

    assert "/sync configure" in router.handle("help", ["/sync"])
    assert "No command named '/frob'" in router.handle("help", ["frob"])


def test_status_sections(tmp_path: Path):
    router = build_router(_config(tmp_path), {"state": StorageState(timestamp="2024-05-01T00:00:00.000Z")})

    document = router.handle("status", ["state"])
    assert "2024-05-01T00:00:00.000Z" in document
    assert "Runtime Status" not in document

    everything = router.handle("status", [])
    assert "Runtime Status" in everything
    assert "No diagnostics reported" in everything
    assert "no server configured" in everything
