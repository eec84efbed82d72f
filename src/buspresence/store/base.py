"""Presence store contract and the shared in-process table.

The table is the single place where presence patches are merged and
snapshots are fanned out to subscribers. Store implementations wrap it:
the in-memory store uses it as the source of truth, the MQTT store as a
local replica fed by the broker.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel
from pydantic.alias_generators import to_snake

from buspresence.models.presence import PresenceRecord

_logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[PresenceRecord]], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass(frozen=True)
class RecordFilter:
    """Equality filter on one presence record field (``field == value``)."""

    field: str
    value: Any

    def matches(self, record: PresenceRecord) -> bool:
        return getattr(record, to_snake(self.field), None) == self.value


ACTIVE_ONLY = RecordFilter("active", True)


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe`` is idempotent."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        cancel = self._cancel
        self._cancel = None
        if cancel is not None:
            cancel()


class PresenceStoreClient(Protocol):
    """Shared key-value table of presence records with change notification.

    Implementations raise :class:`~buspresence.exceptions.StoreUnavailableError`
    when a round-trip fails.
    """

    async def upsert(self, driver_id: str, patch: Mapping[str, Any]) -> PresenceRecord:
        ...

    async def delete(self, driver_id: str) -> None:
        ...

    async def fetch(self, record_filter: RecordFilter | None = None) -> list[PresenceRecord]:
        ...

    def subscribe(self, record_filter: RecordFilter | None, on_change: SnapshotCallback) -> Subscription:
        ...


def normalize_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Turn a caller patch into snake_case record fields.

    Nested models are dumped, and flat ``latitude``/``longitude`` keys are
    folded into ``position``.
    """
    normalized: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, BaseModel):
            value = value.model_dump()
        normalized[to_snake(key)] = value
    latitude = normalized.pop("latitude", None)
    longitude = normalized.pop("longitude", None)
    if latitude is not None and longitude is not None:
        normalized["position"] = {"latitude": latitude, "longitude": longitude}
    normalized.pop("last_seen_at", None)
    normalized.pop("first_seen_at", None)
    return normalized


@dataclasses.dataclass
class _Subscriber:
    record_filter: RecordFilter | None
    on_change: SnapshotCallback


class PresenceTable:
    """In-process presence table with snapshot fan-out.

    Not thread-safe: every method must be called from the event loop thread.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._records: dict[str, PresenceRecord] = {}
        self._subscribers: list[_Subscriber] = []

    def get(self, driver_id: str) -> PresenceRecord | None:
        return self._records.get(driver_id)

    def merge(self, driver_id: str, patch: Mapping[str, Any]) -> PresenceRecord:
        """Merge *patch* into the record for *driver_id* and stamp it.

        Keys absent from the patch keep their current value. ``last_seen_at``
        is refreshed on every merge; ``first_seen_at`` is set once.
        """
        existing = self._records.get(driver_id)
        data: dict[str, Any] = existing.model_dump() if existing is not None else {}
        data.update(normalize_patch(patch))
        now = self._clock()
        data["driver_id"] = driver_id
        data["last_seen_at"] = now
        if data.get("first_seen_at") is None:
            data["first_seen_at"] = now
        record = PresenceRecord.model_validate(data)
        self._records[driver_id] = record
        return record

    def put(self, record: PresenceRecord) -> None:
        """Store *record* as-is (used for records that arrive already stamped)."""
        self._records[record.driver_id] = record

    def remove(self, driver_id: str) -> bool:
        return self._records.pop(driver_id, None) is not None

    def snapshot(self, record_filter: RecordFilter | None = None) -> list[PresenceRecord]:
        records = self._records.values()
        if record_filter is None:
            return list(records)
        return [record for record in records if record_filter.matches(record)]

    def subscribe(self, record_filter: RecordFilter | None, on_change: SnapshotCallback) -> Subscription:
        """Register *on_change* and deliver the current snapshot immediately."""
        subscriber = _Subscriber(record_filter=record_filter, on_change=on_change)
        self._subscribers.append(subscriber)

        def cancel() -> None:
            self._subscribers = [s for s in self._subscribers if s is not subscriber]

        self._deliver(subscriber)
        return Subscription(cancel)

    def notify(self) -> None:
        """Push the full current snapshot to every subscriber."""
        for subscriber in list(self._subscribers):
            if subscriber in self._subscribers:
                self._deliver(subscriber)

    def _deliver(self, subscriber: _Subscriber) -> None:
        try:
            subscriber.on_change(self.snapshot(subscriber.record_filter))
        except Exception:
            _logger.warning("Presence snapshot callback failed", exc_info=True)
