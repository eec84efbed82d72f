"""Deterministic in-memory presence store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from buspresence.models.presence import PresenceRecord
from buspresence.store.base import PresenceTable, RecordFilter, SnapshotCallback, Subscription, _utcnow

_logger = logging.getLogger(__name__)


class InMemoryPresenceStore:
    """Presence store held in process memory.

    Given the same sequence of calls and clock readings it produces the same
    snapshots. Snapshots are delivered synchronously before the write
    returns, so awaiting a write also means subscribers have seen it.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._table = PresenceTable(clock=clock)

    async def upsert(self, driver_id: str, patch: Mapping[str, Any]) -> PresenceRecord:
        record = self._table.merge(driver_id, patch)
        _logger.debug("Upserted presence driver=%s active=%s", driver_id, record.active)
        self._table.notify()
        return record

    async def delete(self, driver_id: str) -> None:
        if self._table.remove(driver_id):
            _logger.debug("Deleted presence driver=%s", driver_id)
            self._table.notify()

    async def fetch(self, record_filter: RecordFilter | None = None) -> list[PresenceRecord]:
        return self._table.snapshot(record_filter)

    def get(self, driver_id: str) -> PresenceRecord | None:
        return self._table.get(driver_id)

    def subscribe(self, record_filter: RecordFilter | None, on_change: SnapshotCallback) -> Subscription:
        return self._table.subscribe(record_filter, on_change)
