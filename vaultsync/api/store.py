"""Server-side storage: sharded blob files plus a SQLite metadata table.

The metadata table is the only source of truth for whether an identifier
exists. A blob file without a row is invisible; a row whose blob file is gone
reads as not found.

Every write goes to a fresh file name. The row is switched to it inside the
write transaction and the superseded file is removed only after COMMIT, so a
failed commit leaves the previous version in place and served.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..checkpoints import atomic_write
from ..errors import ConflictError, NotFoundError, RateLimitError, StorageError
from ..sync.protocol import compute_etag, normalize_etag
from .ratelimit import RATE_LIMIT_MAX, RATE_LIMIT_WINDOW, SlidingWindow

logger = logging.getLogger("vaultsync.api.store")

SHARD_PREFIX_LENGTH = 2


@dataclass
class SyncMetadata:
    """One row of the metadata table."""

    identifier: str
    blob_location: str
    last_updated: float
    rate_limit_window: List[float] = field(default_factory=list)


@dataclass
class StoredBlob:
    """A blob as served to clients."""

    data: str
    etag: str
    last_modified: float


class BlobStore:
    """Blob files sharded by the first characters of the identifier."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def location_for(self, identifier: str) -> str:
        """A new, unused location for the next version of ``identifier``."""
        prefix = identifier[:SHARD_PREFIX_LENGTH]
        return f"{prefix}/{identifier}.{uuid.uuid4().hex[:12]}.json"

    def path_for(self, location: str) -> Path:
        path = (self.root / location).resolve()
        root = self.root.resolve()
        if root not in path.parents:
            raise StorageError(f"Blob location escapes storage root: {location}")
        return path

    def read(self, location: str) -> Optional[str]:
        path = self.path_for(location)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read blob {location}: {exc}") from exc

    def write(self, location: str, data: str) -> None:
        path = self.path_for(location)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create shard directory: {exc}") from exc
        atomic_write(path, data)

    def remove(self, location: str) -> None:
        try:
            self.path_for(location).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove blob file %s...: %s", location[:SHARD_PREFIX_LENGTH + 9], exc.strerror)


class MetadataStore:
    """SQLite table mapping identifier to blob location and write history."""

    def __init__(self, db_path: Path, busy_timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    def initialize(self) -> None:
        """Create the database file and table if missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_metadata (
                    identifier TEXT PRIMARY KEY,
                    blob_location TEXT NOT NULL,
                    last_updated REAL NOT NULL,
                    rate_limit TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_metadata_last_updated
                ON sync_metadata(last_updated)
            """)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,  # Transactions are opened explicitly
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open metadata database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the database write lock for the whole block."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StorageError(f"Metadata transaction failed: {exc}") from exc
        finally:
            conn.close()

    def get(self, identifier: str, conn: Optional[sqlite3.Connection] = None) -> Optional[SyncMetadata]:
        if conn is None:
            try:
                with closing(self._connect()) as own:
                    return self.get(identifier, own)
            except sqlite3.Error as exc:
                raise StorageError(f"Metadata lookup failed: {exc}") from exc

        row = conn.execute(
            "SELECT identifier, blob_location, last_updated, rate_limit "
            "FROM sync_metadata WHERE identifier = ?",
            (identifier,),
        ).fetchone()
        if row is None:
            return None
        return SyncMetadata(
            identifier=row["identifier"],
            blob_location=row["blob_location"],
            last_updated=row["last_updated"],
            rate_limit_window=SlidingWindow.load(row["rate_limit"]),
        )

    def upsert(self, conn: sqlite3.Connection, metadata: SyncMetadata) -> None:
        conn.execute(
            """
            INSERT INTO sync_metadata (identifier, blob_location, last_updated, rate_limit)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(identifier) DO UPDATE SET
                blob_location = excluded.blob_location,
                last_updated = excluded.last_updated,
                rate_limit = excluded.rate_limit
            """,
            (
                metadata.identifier,
                metadata.blob_location,
                metadata.last_updated,
                SlidingWindow.dump(metadata.rate_limit_window),
            ),
        )


class SyncStore:
    """Conditional, rate-limited blob storage behind the HTTP routes.

    ``put`` runs its rate-limit check, version check and write inside one
    ``BEGIN IMMEDIATE`` transaction, so concurrent writers (threads or
    processes sharing the database) are serialized and the 412 decision is
    always made against the blob the committed row points at.
    """

    def __init__(
        self,
        blobs: BlobStore,
        metadata: MetadataStore,
        limiter: Optional[SlidingWindow] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.blobs = blobs
        self.metadata = metadata
        self.limiter = limiter or SlidingWindow()
        self.clock = clock

    @classmethod
    def from_config(cls, data_dir: Path, config: Dict[str, Any]) -> "SyncStore":
        raw = config.get("server", {}) if config else {}
        return cls(
            blobs=BlobStore(data_dir / str(raw.get("data_path", "server/blobs"))),
            metadata=MetadataStore(data_dir / str(raw.get("database_path", "server/metadata.sqlite3"))),
            limiter=SlidingWindow(
                max_requests=int(raw.get("rate_limit_max", RATE_LIMIT_MAX)),
                window_seconds=int(raw.get("rate_limit_window", RATE_LIMIT_WINDOW)),
            ),
        )

    def initialize(self) -> None:
        try:
            self.blobs.root.mkdir(parents=True, exist_ok=True)
            self.metadata.initialize()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Cannot initialize sync storage: {exc}") from exc
        logger.info("Sync storage ready (blobs=%s, db=%s)", self.blobs.root, self.metadata.db_path)

    def get(self, identifier: str) -> StoredBlob:
        """Return the current blob or raise :class:`NotFoundError`."""
        # A concurrent write may remove the file between the row lookup and the read
        for _ in range(2):
            meta = self.metadata.get(identifier)
            if meta is None:
                raise NotFoundError(f"No state stored for {identifier[:8]}...")
            data = self.blobs.read(meta.blob_location)
            if data is not None:
                return StoredBlob(data=data, etag=compute_etag(data), last_modified=meta.last_updated)
        logger.warning("Metadata for %s... points at a missing blob", identifier[:8])
        raise NotFoundError(f"No state stored for {identifier[:8]}...")

    def put(self, identifier: str, data: str, if_match: Optional[str] = None) -> StoredBlob:
        """Write ``data`` if the rate limit and the expected version allow it."""
        written: Optional[str] = None
        try:
            with self.metadata.transaction() as conn:
                now = self.clock()
                meta = self.metadata.get(identifier, conn)
                window = meta.rate_limit_window if meta else []

                decision = self.limiter.check(window, now)
                if not decision.allowed:
                    logger.info("Rate limited %s... for %ss", identifier[:8], decision.retry_after)
                    raise RateLimitError(decision.retry_after)

                current = self.blobs.read(meta.blob_location) if meta else None
                expected = normalize_etag(if_match)
                if current is not None and expected is not None and expected != "*":
                    current_etag = compute_etag(current)
                    if expected != normalize_etag(current_etag):
                        logger.info("Version conflict for %s...", identifier[:8])
                        raise ConflictError("Remote state changed since last sync", current_etag=current_etag)

                location = self.blobs.location_for(identifier)
                self.blobs.write(location, data)
                written = location
                self.metadata.upsert(conn, SyncMetadata(
                    identifier=identifier,
                    blob_location=location,
                    last_updated=now,
                    rate_limit_window=self.limiter.record(decision.window, now),
                ))
        except BaseException:
            if written is not None:
                self.blobs.remove(written)
            raise

        if meta is not None:
            self.blobs.remove(meta.blob_location)
        logger.info("Stored %d bytes for %s...", len(data), identifier[:8])
        return StoredBlob(data=data, etag=compute_etag(data), last_modified=now)


__all__ = ["BlobStore", "MetadataStore", "StoredBlob", "SyncMetadata", "SyncStore"]
