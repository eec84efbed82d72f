from __future__ import annotations

import pytest
from fakes import T0, ManualClock

from buspresence.models.presence import PresenceRecord
from buspresence.store.base import ACTIVE_ONLY, RecordFilter
from buspresence.store.memory import InMemoryPresenceStore


@pytest.mark.asyncio
async def test_subscribe_delivers_current_snapshot_immediately(store: InMemoryPresenceStore) -> None:
    await store.upsert("drv-1", {"active": True, "latitude": 1.0, "longitude": 2.0})
    snapshots: list[list[PresenceRecord]] = []

    store.subscribe(None, snapshots.append)

    assert len(snapshots) == 1
    assert [r.driver_id for r in snapshots[0]] == ["drv-1"]


@pytest.mark.asyncio
async def test_position_only_patch_preserves_descriptive_fields(
    store: InMemoryPresenceStore, clock: ManualClock
) -> None:
    await store.upsert("drv-1", {"display_name": "A", "vehicle_label": "B", "active": True})
    clock.advance(seconds=30)

    record = await store.upsert("drv-1", {"latitude": 40.0, "longitude": -73.0})

    assert record.display_name == "A"
    assert record.vehicle_label == "B"
    assert record.active is True
    assert record.position is not None
    assert (record.position.latitude, record.position.longitude) == (40.0, -73.0)


@pytest.mark.asyncio
async def test_upsert_stamps_timestamps(store: InMemoryPresenceStore, clock: ManualClock) -> None:
    first = await store.upsert("drv-1", {"active": True})
    assert first.first_seen_at == T0
    assert first.last_seen_at == T0

    clock.advance(minutes=2)
    second = await store.upsert("drv-1", {"speed_meters_per_second": 3.5, "last_seen_at": T0})

    assert second.first_seen_at == T0
    assert second.last_seen_at == clock.now
    assert second.speed_meters_per_second == 3.5


@pytest.mark.asyncio
async def test_camel_case_patch_keys_are_accepted(store: InMemoryPresenceStore) -> None:
    record = await store.upsert("drv-1", {"vehicleLabel": "42", "routeLabel": "North Loop"})

    assert record.vehicle_label == "42"
    assert record.route_label == "North Loop"


@pytest.mark.asyncio
async def test_active_filter_and_change_fan_out(store: InMemoryPresenceStore) -> None:
    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(ACTIVE_ONLY, snapshots.append)

    await store.upsert("drv-1", {"active": True})
    await store.upsert("drv-2", {"active": False})

    assert [r.driver_id for r in snapshots[-1]] == ["drv-1"]
    assert len(snapshots) == 3


@pytest.mark.asyncio
async def test_delete_removes_record_and_notifies_once(store: InMemoryPresenceStore) -> None:
    await store.upsert("drv-1", {"active": True})
    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(None, snapshots.append)

    await store.delete("drv-1")
    await store.delete("drv-1")

    assert len(snapshots) == 2
    assert snapshots[-1] == []
    assert await store.fetch() == []


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_stops_delivery(store: InMemoryPresenceStore) -> None:
    snapshots: list[list[PresenceRecord]] = []
    subscription = store.subscribe(None, snapshots.append)

    subscription.unsubscribe()
    subscription.unsubscribe()
    await store.upsert("drv-1", {"active": True})

    assert not subscription.active
    assert snapshots == [[]]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_starve_others(store: InMemoryPresenceStore) -> None:
    def boom(_records: list[PresenceRecord]) -> None:
        raise RuntimeError("render failed")

    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(None, boom)
    store.subscribe(None, snapshots.append)

    await store.upsert("drv-1", {"active": True})

    assert [r.driver_id for r in snapshots[-1]] == ["drv-1"]


@pytest.mark.asyncio
async def test_fetch_with_field_filter(store: InMemoryPresenceStore) -> None:
    await store.upsert("drv-1", {"route_label": "North"})
    await store.upsert("drv-2", {"route_label": "South"})

    records = await store.fetch(RecordFilter("routeLabel", "South"))

    assert [r.driver_id for r in records] == ["drv-2"]
