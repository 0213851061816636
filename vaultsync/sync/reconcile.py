"""Caller-side sync policies built on top of the single-round-trip client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..models import StorageState
from .client import SyncClient
from .conflict import ConflictMerger, MergeReport
from .protocol import NOT_FOUND_ERROR, SyncResult

logger = logging.getLogger("vaultsync.sync.reconcile")


@dataclass
class ReconcileOutcome:
    """Final push result plus the snapshot the caller should keep."""

    result: SyncResult
    state: StorageState
    merged: bool = False
    report: MergeReport = field(default_factory=MergeReport)


def pull_and_merge(
    client: SyncClient,
    local: StorageState,
    merger: Optional[ConflictMerger] = None,
) -> ReconcileOutcome:
    """Fetch the remote snapshot and merge it into ``local``.

    A missing remote is not an error: the local snapshot is returned as-is.
    """
    merger = merger or ConflictMerger()
    fetched = client.fetch()
    if not fetched.success:
        if fetched.error == NOT_FOUND_ERROR:
            return ReconcileOutcome(result=SyncResult(success=True), state=local)
        return ReconcileOutcome(
            result=SyncResult(success=False, error=fetched.error),
            state=local,
        )

    merged, report = merger.merge_with_report(local, fetched.state)
    return ReconcileOutcome(
        result=SyncResult(success=True),
        state=merged,
        merged=True,
        report=report,
    )


def push_with_merge(
    client: SyncClient,
    local: StorageState,
    merger: Optional[ConflictMerger] = None,
) -> ReconcileOutcome:
    """Push ``local``; on a version conflict fetch, merge and push once more.

    A client that has not seen any remote version yet (freshly configured)
    pulls first, so the push carries ``If-Match`` and cannot silently replace
    a document written by another device.
    """
    merger = merger or ConflictMerger()
    pulled = ReconcileOutcome(result=SyncResult(success=True), state=local)
    if client.last_known_etag is None:
        pulled = pull_and_merge(client, local, merger)
        if not pulled.result.success:
            return ReconcileOutcome(result=pulled.result, state=local)

    result = client.sync(pulled.state)
    if result.success or not result.is_conflict:
        return ReconcileOutcome(result=result, state=pulled.state, merged=pulled.merged, report=pulled.report)

    logger.info("Remote changed since last sync; fetching to merge")
    pulled = pull_and_merge(client, pulled.state, merger)
    if not pulled.result.success:
        return ReconcileOutcome(result=pulled.result, state=local)

    retry = client.sync(pulled.state)
    return ReconcileOutcome(
        result=retry,
        state=pulled.state,
        merged=pulled.merged,
        report=pulled.report,
    )


__all__ = ["ReconcileOutcome", "pull_and_merge", "push_with_merge"]
