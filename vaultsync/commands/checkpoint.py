"""/checkpoint: save, list, load and delete on-device snapshots."""

from __future__ import annotations

from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..checkpoints import LocalCheckpointStore, MANUAL_SLOT_MAX, MANUAL_SLOT_MIN
from ..models import StorageState, utc_now_iso
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

SLOT_RANGE = f"{MANUAL_SLOT_MIN}-{MANUAL_SLOT_MAX}"


def _store(context: SlashCommandContext) -> LocalCheckpointStore:
    if context.checkpoints is None:
        context.checkpoints = LocalCheckpointStore.from_config(context.config.data_dir, context.config.merged)
    return context.checkpoints


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    store = _store(context)
    subcommand = args[0].lower() if args else "list"
    rest = args[1:]

    if subcommand == "list":
        return _list(store)
    if subcommand == "save":
        return _save(context, store, rest)
    if subcommand == "auto":
        store.save_auto_checkpoint(_stamped(context))
        return "[checkpoint] Automatic checkpoint saved."
    if subcommand == "load":
        return _load(context, store, rest)
    if subcommand == "delete":
        return _delete(store, rest)
    if subcommand == "help":
        return USAGE
    return f"[checkpoint] Unknown subcommand '{subcommand}'. Use /checkpoint help for usage."


def _list(store: LocalCheckpointStore) -> str:
    checkpoints = store.list_checkpoints()
    if not checkpoints:
        return "[checkpoint] No checkpoints saved yet."

    def _render(console: Console) -> None:
        table = Table(title=f"Checkpoints in {store.directory}", header_style="bold cyan")
        table.add_column("Slot", justify="right", style="green")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Saved at", style="dim")
        for cp in checkpoints:
            kind = "manual" if cp.is_manual else "auto"
            table.add_row(str(cp.index), kind, Text(cp.name or ""), cp.timestamp or "(unknown)")
        console.print(table)

    return render_rich(_render)


def _stamped(context: SlashCommandContext) -> StorageState:
    state = context.state
    state.timestamp = utc_now_iso()
    return state


def _save(context: SlashCommandContext, store: LocalCheckpointStore, args: List[str]) -> str:
    if len(args) < 2:
        return f"[checkpoint] Usage: /checkpoint save <{SLOT_RANGE}> <name>"
    slot = _parse_slot(args[0])
    if slot is None:
        return f"[checkpoint] '{args[0]}' is not a slot number."
    name = " ".join(args[1:])
    store.save_manual_checkpoint(slot, name, _stamped(context))
    return f"[checkpoint] Saved '{name}' to slot {slot}."


def _load(context: SlashCommandContext, store: LocalCheckpointStore, args: List[str]) -> str:
    if args:
        slot = _parse_slot(args[0])
        if slot is None:
            return f"[checkpoint] '{args[0]}' is not a slot number."
        label = f"slot {slot}"
        state = store.load_checkpoint(slot)
    else:
        label = "newest checkpoint"
        state = store.load_newest()

    if state is None:
        return f"[checkpoint] Nothing stored in {label}."
    context.state = state
    return f"[checkpoint] Loaded {label} ({state.timestamp or 'no timestamp'})."


def _delete(store: LocalCheckpointStore, args: List[str]) -> str:
    if not args:
        return f"[checkpoint] Usage: /checkpoint delete <{SLOT_RANGE}>"
    slot = _parse_slot(args[0])
    if slot is None:
        return f"[checkpoint] '{args[0]}' is not a slot number."
    if store.delete_manual_checkpoint(slot):
        return f"[checkpoint] Deleted slot {slot}."
    return f"[checkpoint] Slot {slot} is already empty."


def _parse_slot(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


USAGE = f"""[checkpoint] Usage:
  /checkpoint                     List checkpoints
  /checkpoint auto                Save an automatic checkpoint (oldest is evicted)
  /checkpoint save <slot> <name>  Save a named checkpoint to slot {SLOT_RANGE}
  /checkpoint load [slot]         Load a slot, or the newest checkpoint
  /checkpoint delete <slot>       Delete a named checkpoint"""


COMMAND = SlashCommand(
    name="checkpoint",
    description="On-device snapshots of the document.",
    handler=_handler,
    subcommands=("list", "save", "auto", "load", "delete", "help"),
)
