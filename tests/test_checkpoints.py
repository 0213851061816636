"""Tests for on-device checkpoint storage."""

from __future__ import annotations

import errno
import json
import os
import time
from pathlib import Path

import pytest

from vaultsync import checkpoints as checkpoints_module
from vaultsync.checkpoints import LocalCheckpointStore, atomic_write, file_lock
from vaultsync.errors import StorageError, ValidationError
from vaultsync.models import DataItem, HumanEntity, StorageState


def _state(timestamp: str, fact: str = "f") -> StorageState:
    return StorageState(
        timestamp=timestamp,
        human=HumanEntity(facts=[DataItem(id=fact, name=fact, last_updated=timestamp)]),
    )


def _stamp(n: int) -> str:
    return f"2024-01-01T00:00:{n:02d}.000Z"


def _store(tmp_path: Path, **kwargs) -> LocalCheckpointStore:
    kwargs.setdefault("lock_timeout", 0.5)
    kwargs.setdefault("lock_retry_delay", 0.01)
    return LocalCheckpointStore(tmp_path / "checkpoints", **kwargs)


def test_empty_store_lists_nothing(tmp_path: Path):
    store = _store(tmp_path)

    assert store.list_checkpoints() == []
    assert store.load_newest() is None
    assert store.load_checkpoint(0) is None


def test_auto_saves_are_capped_and_evict_oldest(tmp_path: Path):
    store = _store(tmp_path)

    for n in range(12):
        store.save_auto_checkpoint(_state(_stamp(n)))

    listed = store.list_checkpoints()
    assert len(listed) == 10
    assert [cp.index for cp in listed] == list(range(10))
    assert listed[0].timestamp == _stamp(2)
    assert listed[-1].timestamp == _stamp(11)
    assert store.load_checkpoint(0).timestamp == _stamp(2)


def test_max_auto_saves_cannot_reach_manual_slots(tmp_path: Path):
    assert _store(tmp_path, max_auto_saves=50).max_auto_saves == 10
    assert _store(tmp_path, max_auto_saves=0).max_auto_saves == 1


def test_manual_slot_round_trip(tmp_path: Path):
    store = _store(tmp_path)
    state = _state(_stamp(5), fact="trip")

    store.save_manual_checkpoint(12, "before trip", state)

    listed = store.list_checkpoints()
    assert len(listed) == 1
    assert listed[0].index == 12
    assert listed[0].name == "before trip"
    assert listed[0].is_manual
    assert store.load_checkpoint(12).to_dict() == state.to_dict()
    assert store.manual_path(12).exists()


@pytest.mark.parametrize("slot", [0, 9, 15, -1])
def test_manual_save_outside_range_is_rejected_without_writing(tmp_path: Path, slot: int):
    store = _store(tmp_path)

    with pytest.raises(ValidationError):
        store.save_manual_checkpoint(slot, "nope", _state(_stamp(1)))

    assert not store.directory.exists() or not any(store.directory.iterdir())


def test_delete_manual_checkpoint(tmp_path: Path):
    store = _store(tmp_path)
    store.save_manual_checkpoint(10, "keep", _state(_stamp(1)))

    assert store.delete_manual_checkpoint(10) is True
    assert store.delete_manual_checkpoint(10) is False
    assert store.list_checkpoints() == []


def test_delete_of_auto_slot_is_rejected(tmp_path: Path):
    store = _store(tmp_path)
    store.save_auto_checkpoint(_state(_stamp(1)))

    with pytest.raises(ValidationError):
        store.delete_manual_checkpoint(0)
    assert len(store.list_checkpoints()) == 1


def test_load_newest_picks_latest_across_kinds(tmp_path: Path):
    store = _store(tmp_path)
    store.save_auto_checkpoint(_state(_stamp(1), fact="auto-old"))
    store.save_manual_checkpoint(11, "manual", _state(_stamp(9), fact="manual"))
    store.save_auto_checkpoint(_state(_stamp(5), fact="auto-new"))

    newest = store.load_newest()

    assert newest.timestamp == _stamp(9)
    assert newest.human.facts[0].id == "manual"


def test_corrupt_files_read_as_empty(tmp_path: Path):
    store = _store(tmp_path)
    store.directory.mkdir(parents=True)
    store.auto_saves_path.write_text("{not json")
    store.manual_path(13).write_text("[]")

    assert store.list_checkpoints() == []
    store.save_auto_checkpoint(_state(_stamp(1)))
    assert len(store.list_checkpoints()) == 1


def test_wrong_shape_checkpoint_raises_storage_error(tmp_path: Path):
    store = _store(tmp_path)
    store.directory.mkdir(parents=True)
    store.auto_saves_path.write_text(
        json.dumps([{"timestamp": _stamp(3), "human": {"facts": [{"name": "no id"}]}}])
    )

    with pytest.raises(StorageError, match="automatic checkpoint 0"):
        store.load_checkpoint(0)


def test_load_newest_skips_malformed_checkpoints(tmp_path: Path):
    store = _store(tmp_path)
    store.save_manual_checkpoint(10, "good", _state(_stamp(1), fact="good"))
    store.auto_saves_path.write_text(
        json.dumps([
            {"timestamp": _stamp(3), "human": {"facts": [{"name": "no id"}]}},
            {"timestamp": 42, "human": "not a mapping"},
        ])
    )

    newest = store.load_newest()

    assert newest.timestamp == _stamp(1)
    assert newest.human.facts[0].id == "good"


def test_load_newest_returns_none_when_every_checkpoint_is_malformed(tmp_path: Path):
    store = _store(tmp_path)
    store.directory.mkdir(parents=True)
    store.auto_saves_path.write_text(json.dumps([{"timestamp": _stamp(3), "queue": 7}]))

    assert store.load_newest() is None


def test_writes_leave_no_temp_or_lock_files(tmp_path: Path):
    store = _store(tmp_path)
    store.save_auto_checkpoint(_state(_stamp(1)))
    store.save_manual_checkpoint(14, "last", _state(_stamp(2)))

    names = sorted(p.name for p in store.directory.iterdir())
    assert names == ["autosaves.json", "manual_14.json"]
    assert isinstance(json.loads(store.auto_saves_path.read_text()), list)


def test_is_available(tmp_path: Path):
    assert _store(tmp_path).is_available()
    blocker = tmp_path / "file"
    blocker.write_text("x")
    assert not LocalCheckpointStore(blocker / "checkpoints").is_available()


def test_held_lock_times_out(tmp_path: Path):
    target = tmp_path / "autosaves.json"
    lock_path = tmp_path / "autosaves.json.lock"
    lock_path.write_text(str(time.time() + 60))

    with pytest.raises(StorageError):
        with file_lock(target, timeout=0.1, retry_delay=0.01):
            pass

    assert lock_path.exists()


def test_lock_is_released_after_block(tmp_path: Path):
    target = tmp_path / "autosaves.json"

    with file_lock(target, timeout=0.5, retry_delay=0.01) as held:
        assert held.exists()

    assert not held.exists()


def test_stale_lock_is_removed(tmp_path: Path):
    target = tmp_path / "autosaves.json"
    lock_path = tmp_path / "autosaves.json.lock"
    lock_path.write_text(str(time.time() - 60))

    with file_lock(target, timeout=5.0, retry_delay=0.01) as held:
        assert held == lock_path
        assert float(lock_path.read_text()) > time.time() - 5

    assert not lock_path.exists()


def test_disk_full_becomes_storage_error(tmp_path: Path, monkeypatch):
    def _full(*_args, **_kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(checkpoints_module.os, "replace", _full)
    target = tmp_path / "autosaves.json"

    with pytest.raises(StorageError, match="Disk quota exceeded"):
        atomic_write(target, "[]")

    assert not target.exists()
    assert os.listdir(tmp_path) == []
