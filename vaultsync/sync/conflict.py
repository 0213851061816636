"""Merge two independently edited snapshots of the same document."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..models import DATA_ITEM_LISTS, DataItem, Quote, StorageState, utc_now_iso

logger = logging.getLogger("vaultsync.sync.conflict")


@dataclass
class MergeReport:
    """What a merge changed relative to the local snapshot."""

    items_added: int = 0
    items_upgraded: int = 0
    quotes_added: int = 0
    personas_added: int = 0
    personas_updated: int = 0
    messages_added: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(
            self.items_added or self.items_upgraded or self.quotes_added
            or self.personas_added or self.personas_updated or self.messages_added
        )

    def summary(self) -> str:
        parts = []
        if self.items_added:
            parts.append(f"{self.items_added} items added")
        if self.items_upgraded:
            parts.append(f"{self.items_upgraded} items updated")
        if self.quotes_added:
            parts.append(f"{self.quotes_added} quotes added")
        if self.personas_added:
            parts.append(f"{self.personas_added} personas added")
        if self.personas_updated:
            parts.append(f"{self.personas_updated} personas updated")
        if self.messages_added:
            parts.append(f"{self.messages_added} messages added")
        return ", ".join(parts) if parts else "no changes"


class ConflictMerger:
    """Last-write-wins merge per item, union for append-only collections.

    Remote items replace local ones only when their ``last_updated`` is
    strictly greater, so on an exact tie the local copy is kept. Nothing is
    ever deleted because it is missing on one side.
    """

    def __init__(self, clock: Optional[Callable[[], str]] = None) -> None:
        self.clock = clock or utc_now_iso

    def merge(self, local: StorageState, remote: StorageState) -> StorageState:
        merged, _ = self.merge_with_report(local, remote)
        return merged

    def merge_with_report(
        self,
        local: StorageState,
        remote: StorageState,
    ) -> Tuple[StorageState, MergeReport]:
        report = MergeReport()
        merged = copy.deepcopy(local)
        human = merged.human

        for kind in DATA_ITEM_LISTS:
            merged_items = self._merge_items(human.items(kind), remote.human.items(kind), report)
            setattr(human, kind, merged_items)
        human.quotes = self._merge_quotes(human.quotes, remote.human.quotes, report)

        if remote.human.last_updated > human.last_updated:
            human.last_updated = remote.human.last_updated

        for name, remote_persona in remote.personas.items():
            local_persona = merged.personas.get(name)
            if local_persona is None:
                merged.personas[name] = copy.deepcopy(remote_persona)
                report.personas_added += 1
                continue

            seen = {message.id for message in local_persona.messages}
            for message in remote_persona.messages:
                if message.id not in seen:
                    local_persona.messages.append(copy.deepcopy(message))
                    seen.add(message.id)
                    report.messages_added += 1
            local_persona.messages.sort(key=lambda message: message.timestamp)

            if remote_persona.entity.last_updated > local_persona.entity.last_updated:
                local_persona.entity = copy.deepcopy(remote_persona.entity)
                report.personas_updated += 1

        merged.timestamp = self.clock()
        logger.info("Merged remote snapshot: %s", report.summary())
        return merged, report

    def _merge_items(
        self,
        local: List[DataItem],
        remote: List[DataItem],
        report: MergeReport,
    ) -> List[DataItem]:
        merged = list(local)
        positions = {item.id: idx for idx, item in enumerate(merged)}

        for remote_item in remote:
            idx = positions.get(remote_item.id)
            if idx is None:
                positions[remote_item.id] = len(merged)
                merged.append(copy.deepcopy(remote_item))
                report.items_added += 1
            elif remote_item.last_updated > merged[idx].last_updated:
                merged[idx] = copy.deepcopy(remote_item)
                report.items_upgraded += 1

        return merged

    def _merge_quotes(
        self,
        local: List[Quote],
        remote: List[Quote],
        report: MergeReport,
    ) -> List[Quote]:
        merged = list(local)
        seen = {quote.id for quote in merged}
        for quote in remote:
            if quote.id not in seen:
                merged.append(copy.deepcopy(quote))
                seen.add(quote.id)
                report.quotes_added += 1
        return merged


def merge_states(local: StorageState, remote: StorageState) -> StorageState:
    """Merge ``remote`` into ``local`` with the default clock."""
    return ConflictMerger().merge(local, remote)


__all__ = ["ConflictMerger", "MergeReport", "merge_states"]
