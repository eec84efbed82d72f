"""Viewer-side merge of scheduled vehicles and live driver presence."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from buspresence._constants import LIVE_ROUTE_LABEL, LIVE_STATUS, LIVE_VEHICLE_LABEL, RECENCY_THRESHOLD_MS
from buspresence.feeds import VehicleFeed
from buspresence.models.presence import PresenceRecord
from buspresence.models.vehicle import VehicleView
from buspresence.recency import Freshness, classify
from buspresence.store.base import ACTIVE_ONLY, PresenceStoreClient, Subscription

_logger = logging.getLogger(__name__)

ViewCallback = Callable[[list[VehicleView]], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def project_presence(record: PresenceRecord) -> VehicleView | None:
    """Project one presence record into a live view row.

    Returns ``None`` for records without a position; they are never
    rendered with a null coordinate.
    """
    if record.position is None:
        return None
    return VehicleView(
        id=record.driver_id,
        label=record.vehicle_label or LIVE_VEHICLE_LABEL,
        route=record.route_label or LIVE_ROUTE_LABEL,
        latitude=record.position.latitude,
        longitude=record.position.longitude,
        status=LIVE_STATUS,
        speed=record.speed_meters_per_second or 0.0,
        last_updated=record.last_seen_at,
        is_live=True,
        driver_name=record.display_name,
        heading=record.heading_degrees,
    )


def merge_view(
    static_vehicles: Iterable[VehicleView],
    live_presence: Iterable[PresenceRecord],
) -> list[VehicleView]:
    """Concatenate static rows and projected live rows.

    Static rows pass through unchanged, in source order, followed by the
    live rows in source order. Pure: no I/O, never raises for well-formed
    models.
    """
    merged: list[VehicleView] = list(static_vehicles)
    for record in live_presence:
        row = project_presence(record)
        if row is not None:
            merged.append(row)
    return merged


class PresenceAggregator:
    """Keep a merged, recency-aware vehicle view in sync with its sources.

    Usage::

        async with PresenceAggregator(store, feed, on_view=render) as aggregator:
            ...
            badges = aggregator.freshness()
    """

    def __init__(
        self,
        store: PresenceStoreClient,
        vehicle_feed: VehicleFeed | None = None,
        *,
        on_view: ViewCallback | None = None,
        threshold_ms: int = RECENCY_THRESHOLD_MS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._feed = vehicle_feed
        self._on_view = on_view
        self._threshold_ms = threshold_ms
        self._clock = clock
        self._static: list[VehicleView] = []
        self._live: list[PresenceRecord] = []
        self._view: list[VehicleView] = []
        self._subscriptions: list[Subscription] = []

    async def __aenter__(self) -> PresenceAggregator:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        return bool(self._subscriptions)

    @property
    def view(self) -> list[VehicleView]:
        return list(self._view)

    @property
    def live_records(self) -> list[PresenceRecord]:
        return list(self._live)

    def start(self) -> None:
        """Subscribe to live presence and, when configured, the vehicle feed."""
        if self._subscriptions:
            return
        self._subscriptions.append(self._store.subscribe(ACTIVE_ONLY, self._on_presence))
        if self._feed is not None:
            self._subscriptions.append(self._feed.subscribe(self._on_vehicles))

    def close(self) -> None:
        """Unsubscribe from every source. Safe to call repeatedly."""
        subscriptions = self._subscriptions
        self._subscriptions = []
        for subscription in subscriptions:
            subscription.unsubscribe()

    async def refresh(self) -> list[VehicleView]:
        """Pull the current live records and re-emit the merged view."""
        self._live = await self._store.fetch(ACTIVE_ONLY)
        return self._recompute()

    def freshness(self, now: datetime | None = None) -> dict[str, Freshness]:
        """Recency of every live row, keyed by driver id."""
        now = now or self._clock()
        return {
            row.id: classify(row.last_updated, now, self._threshold_ms) for row in self._view if row.is_live
        }

    def _on_presence(self, records: list[PresenceRecord]) -> None:
        self._live = records
        self._recompute()

    def _on_vehicles(self, vehicles: list[VehicleView]) -> None:
        self._static = vehicles
        self._recompute()

    def _recompute(self) -> list[VehicleView]:
        self._view = merge_view(self._static, self._live)
        _logger.debug("Merged view static=%d live=%d rows=%d", len(self._static), len(self._live), len(self._view))
        if self._on_view is not None:
            self._on_view(list(self._view))
        return self.view
