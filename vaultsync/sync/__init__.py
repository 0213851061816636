"""Encrypted snapshot synchronization for vaultsync."""

from __future__ import annotations

from .protocol import (
    FetchResult,
    RemoteTimestamp,
    SyncResult,
    compute_etag,
    open_state,
    seal_state,
    validate_identifier,
)
from .client import SyncClient, SyncSettings
from .conflict import ConflictMerger, MergeReport, merge_states
from .reconcile import ReconcileOutcome, pull_and_merge, push_with_merge

__all__ = [
    # Protocol
    "FetchResult",
    "RemoteTimestamp",
    "SyncResult",
    "compute_etag",
    "open_state",
    "seal_state",
    "validate_identifier",
    # Client
    "SyncClient",
    "SyncSettings",
    # Conflict
    "ConflictMerger",
    "MergeReport",
    "merge_states",
    # Policies
    "ReconcileOutcome",
    "pull_and_merge",
    "push_with_merge",
]
