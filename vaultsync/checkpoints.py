"""On-device checkpoint storage.

Layout under the checkpoint directory::

    autosaves.json        list of the most recent automatic snapshots
    manual_<slot>.json    {"name": ..., "state": ...} for each manual slot

Writes go through a lock file, a temporary file and an atomic rename so a
crash never leaves a half-written checkpoint behind.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import StorageError, ValidationError
from .models import Checkpoint, StorageState

logger = logging.getLogger("vaultsync.checkpoints")

AUTO_SAVES_FILE = "autosaves.json"
MANUAL_SAVE_PREFIX = "manual_"
MAX_AUTO_SAVES = 10
MANUAL_SLOT_MIN = 10
MANUAL_SLOT_MAX = 14
LOCK_TIMEOUT = 5.0
LOCK_RETRY_DELAY = 0.05


@contextmanager
def file_lock(
    target: Path,
    timeout: float = LOCK_TIMEOUT,
    retry_delay: float = LOCK_RETRY_DELAY,
) -> Iterator[Path]:
    """Hold ``<target>.lock`` for the duration of the block.

    A lock file older than ``timeout`` is treated as abandoned and removed.
    Raises :class:`StorageError` if the lock cannot be taken within
    ``timeout`` seconds.
    """
    lock_path = target.with_name(target.name + ".lock")
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if _lock_is_stale(lock_path, timeout):
                logger.warning("Removing stale lock %s", lock_path)
                try:
                    lock_path.unlink()
                except FileNotFoundError:
                    pass
                continue
            if time.monotonic() >= deadline:
                raise StorageError(f"Could not acquire file lock {lock_path}")
            time.sleep(retry_delay)
            continue
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(time.time()))
            break

    try:
        yield lock_path
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass


def _lock_is_stale(lock_path: Path, timeout: float) -> bool:
    try:
        content = lock_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return True
    except OSError:
        return False
    try:
        locked_at = float(content)
    except ValueError:
        # Holder may not have written its timestamp yet; fall back to mtime
        try:
            locked_at = lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
    return time.time() - locked_at > timeout


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file, then rename it over ``path``."""
    fd, temp_name = tempfile.mkstemp(prefix=f"{path.name}.tmp.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except OSError as exc:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        if exc.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
            raise StorageError(f"Disk quota exceeded writing {path.name}") from exc
        raise StorageError(f"Failed to write {path}: {exc}") from exc


class LocalCheckpointStore:
    """Ring buffer of automatic snapshots plus a few named manual slots."""

    def __init__(
        self,
        directory: Path,
        max_auto_saves: int = MAX_AUTO_SAVES,
        lock_timeout: float = LOCK_TIMEOUT,
        lock_retry_delay: float = LOCK_RETRY_DELAY,
    ) -> None:
        self.directory = directory
        # Automatic indices must stay below the manual slot range
        self.max_auto_saves = max(1, min(max_auto_saves, MANUAL_SLOT_MIN))
        self.lock_timeout = lock_timeout
        self.lock_retry_delay = lock_retry_delay

    @classmethod
    def from_config(cls, data_dir: Path, config: Dict[str, Any]) -> "LocalCheckpointStore":
        raw = config.get("checkpoints", {}) if config else {}
        return cls(
            directory=data_dir / str(raw.get("directory", "state/checkpoints")),
            max_auto_saves=int(raw.get("max_auto_saves", MAX_AUTO_SAVES)),
            lock_timeout=float(raw.get("lock_timeout", LOCK_TIMEOUT)),
            lock_retry_delay=float(raw.get("lock_retry_delay", LOCK_RETRY_DELAY)),
        )

    @property
    def auto_saves_path(self) -> Path:
        return self.directory / AUTO_SAVES_FILE

    def manual_path(self, index: int) -> Path:
        return self.directory / f"{MANUAL_SAVE_PREFIX}{index}.json"

    def is_available(self) -> bool:
        """Check that the checkpoint directory can be written."""
        try:
            self._ensure_dir()
            marker = self.directory / "__vaultsync_storage_test__"
            marker.write_text("1", encoding="utf-8")
            marker.unlink()
            return True
        except (OSError, StorageError):
            return False

    def list_checkpoints(self) -> List[Checkpoint]:
        result = [
            Checkpoint(index=i, timestamp=_timestamp_of(state))
            for i, state in enumerate(self._read_auto_saves())
        ]
        for slot in range(MANUAL_SLOT_MIN, MANUAL_SLOT_MAX + 1):
            entry = self._read_manual(slot)
            if entry is not None:
                result.append(Checkpoint(
                    index=slot,
                    timestamp=_timestamp_of(entry["state"]),
                    name=str(entry.get("name") or ""),
                ))
        return result

    def load_checkpoint(self, index: int) -> Optional[StorageState]:
        """Decode one slot.

        Returns ``None`` for an empty slot. Raises :class:`StorageError` when
        the slot holds JSON that is not a document.
        """
        if index < MANUAL_SLOT_MIN:
            auto_saves = self._read_auto_saves()
            if 0 <= index < len(auto_saves):
                return _decode_state(auto_saves[index], f"automatic checkpoint {index}")
            return None

        entry = self._read_manual(index)
        if entry is None:
            return None
        return _decode_state(entry["state"], f"manual checkpoint {index}")

    def load_newest(self) -> Optional[StorageState]:
        """Load whichever checkpoint, automatic or manual, is most recent.

        Slots that cannot be decoded are logged and skipped in favour of the
        next most recent one.
        """
        for checkpoint in sorted(self.list_checkpoints(), key=lambda cp: cp.timestamp, reverse=True):
            try:
                return self.load_checkpoint(checkpoint.index)
            except StorageError as exc:
                logger.error("Skipping checkpoint %d: %s", checkpoint.index, exc.message)
        return None

    def save_auto_checkpoint(self, state: StorageState) -> None:
        self._ensure_dir()
        with file_lock(self.auto_saves_path, self.lock_timeout, self.lock_retry_delay):
            auto_saves = self._read_auto_saves()
            auto_saves.append(state.to_dict())
            evicted = max(0, len(auto_saves) - self.max_auto_saves)
            if evicted:
                auto_saves = auto_saves[evicted:]
            atomic_write(self.auto_saves_path, json.dumps(auto_saves, indent=2))
        logger.debug("Saved automatic checkpoint (%d evicted)", evicted)

    def save_manual_checkpoint(self, index: int, name: str, state: StorageState) -> None:
        if not MANUAL_SLOT_MIN <= index <= MANUAL_SLOT_MAX:
            raise ValidationError(
                f"Manual saves must use slots {MANUAL_SLOT_MIN}-{MANUAL_SLOT_MAX}"
            )
        self._ensure_dir()
        path = self.manual_path(index)
        entry = {"name": name, "state": state.to_dict()}
        with file_lock(path, self.lock_timeout, self.lock_retry_delay):
            atomic_write(path, json.dumps(entry, indent=2))
        logger.info("Saved manual checkpoint %d (%s)", index, name)

    def delete_manual_checkpoint(self, index: int) -> bool:
        if not MANUAL_SLOT_MIN <= index <= MANUAL_SLOT_MAX:
            raise ValidationError(
                f"Cannot delete auto-save slots (0-{MANUAL_SLOT_MIN - 1})"
            )
        path = self.manual_path(index)
        if not path.exists():
            return False
        with file_lock(path, self.lock_timeout, self.lock_retry_delay):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        logger.info("Deleted manual checkpoint %d", index)
        return True

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create checkpoint directory {self.directory}: {exc}") from exc

    def _read_auto_saves(self) -> List[Dict[str, Any]]:
        data = self._read_json(self.auto_saves_path)
        if not isinstance(data, list):
            return []
        return [state for state in data if isinstance(state, dict)]

    def _read_manual(self, index: int) -> Optional[Dict[str, Any]]:
        data = self._read_json(self.manual_path(index))
        if not isinstance(data, dict) or not isinstance(data.get("state"), dict):
            return None
        return data

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return None
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("Ignoring corrupt checkpoint file %s: %s", path, exc)
            return None


def _timestamp_of(state: Dict[str, Any]) -> str:
    timestamp = state.get("timestamp")
    return timestamp if isinstance(timestamp, str) else ""


def _decode_state(data: Dict[str, Any], label: str) -> StorageState:
    try:
        return StorageState.from_dict(data)
    except (KeyError, TypeError, AttributeError) as exc:
        raise StorageError(f"Malformed {label}: {exc!r}") from exc


__all__ = [
    "LocalCheckpointStore",
    "MANUAL_SLOT_MAX",
    "MANUAL_SLOT_MIN",
    "MAX_AUTO_SAVES",
    "atomic_write",
    "file_lock",
]
