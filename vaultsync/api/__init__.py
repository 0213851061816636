"""HTTP server side of vaultsync: blob storage behind a conditional-write API."""

from __future__ import annotations

from .ratelimit import RateLimitDecision, SlidingWindow
from .server import APIServerState, SyncAPIServer, create_app, main
from .store import BlobStore, MetadataStore, StoredBlob, SyncMetadata, SyncStore

__all__ = [
    "APIServerState",
    "BlobStore",
    "MetadataStore",
    "RateLimitDecision",
    "SlidingWindow",
    "StoredBlob",
    "SyncAPIServer",
    "SyncMetadata",
    "SyncStore",
    "create_app",
    "main",
]
