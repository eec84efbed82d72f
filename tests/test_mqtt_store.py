from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import pytest
from fakes import T0, ManualClock

from buspresence.config import PresenceConfig
from buspresence.exceptions import StoreUnavailableError
from buspresence.models.presence import PresenceRecord
from buspresence.store.base import ACTIVE_ONLY
from buspresence.store.mqtt import MqttPresenceStore


@dataclass
class _ReasonCode:
    value: int = 0


@dataclass
class _Message:
    topic: str
    payload: bytes


class _FakeInfo:
    def __init__(self, rc: int, published: bool) -> None:
        self.rc = rc
        self._published = published

    def wait_for_publish(self, timeout: float | None = None) -> None:
        return None

    def is_published(self) -> bool:
        return self._published


class _FakeClient:
    """Stands in for ``paho.mqtt.client.Client`` on the network boundary."""

    def __init__(self, *, auto_connect: bool = True) -> None:
        self.auto_connect = auto_connect
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.subscriptions: list[tuple[str, int]] = []
        self.rc = 0
        self.acknowledge = True
        self.disconnected = False
        self.on_connect: Any = None
        self.on_message: Any = None
        self.on_disconnect: Any = None

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        self.address = (host, port, keepalive)

    def loop_start(self) -> None:
        if self.auto_connect:
            self.on_connect(self, None, None, _ReasonCode(0), None)

    def loop_stop(self) -> None:
        return None

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.append((topic, qos))

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> _FakeInfo:
        self.published.append((topic, payload, qos, retain))
        return _FakeInfo(self.rc, self.acknowledge)

    def deliver(self, topic: str, payload: bytes) -> None:
        self.on_message(self, None, _Message(topic, payload))


def _store(client: _FakeClient, clock: ManualClock, **config: Any) -> MqttPresenceStore:
    return MqttPresenceStore(PresenceConfig(**config), client=client, clock=clock)  # type: ignore[arg-type]


def _payload(driver_id: str, **fields: Any) -> bytes:
    record = PresenceRecord(driver_id=driver_id, **fields)
    return record.model_dump_json(by_alias=True).encode("utf-8")


@pytest.mark.asyncio
async def test_upsert_publishes_retained_camel_case_record(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)

    record = await store.upsert("drv-1", {"active": True, "vehicle_label": "12", "latitude": 1.0, "longitude": 2.0})

    topic, payload, qos, retain = client.published[0]
    assert topic == "buspresence/drivers/drv-1"
    assert (qos, retain) == (1, True)
    body = json.loads(payload)
    assert body["driverId"] == "drv-1"
    assert body["vehicleLabel"] == "12"
    assert body["position"] == {"latitude": 1.0, "longitude": 2.0}
    assert await store.fetch(ACTIVE_ONLY) == [record]


@pytest.mark.asyncio
async def test_rejected_publish_rolls_back_local_table(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)
    await store.upsert("drv-1", {"vehicle_label": "12"})

    client.rc = 4
    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.upsert("drv-1", {"vehicle_label": "99"})

    assert exc_info.value.driver_id == "drv-1"
    (record,) = await store.fetch()
    assert record.vehicle_label == "12"


@pytest.mark.asyncio
async def test_unacknowledged_publish_fails(clock: ManualClock) -> None:
    client = _FakeClient()
    client.acknowledge = False
    store = _store(client, clock)

    with pytest.raises(StoreUnavailableError):
        await store.upsert("drv-1", {"active": True})

    assert await store.fetch() == []


@pytest.mark.asyncio
async def test_delete_publishes_empty_retained_payload(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)
    await store.upsert("drv-1", {"active": True})

    await store.delete("drv-1")

    assert client.published[-1] == ("buspresence/drivers/drv-1", b"", 1, True)
    assert await store.fetch() == []


@pytest.mark.asyncio
async def test_remote_messages_update_snapshot(clock: ManualClock) -> None:
    store = _store(_FakeClient(), clock)
    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(ACTIVE_ONLY, snapshots.append)

    store._apply_remote("drv-2", _payload("drv-2", active=True, last_seen_at=T0))
    assert [r.driver_id for r in snapshots[-1]] == ["drv-2"]
    assert snapshots[-1][0].last_seen_at == T0

    store._apply_remote("drv-2", b"")
    assert snapshots[-1] == []


@pytest.mark.asyncio
async def test_own_echo_does_not_renotify(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)
    await store.upsert("drv-1", {"active": True})
    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(None, snapshots.append)

    store._apply_remote("drv-1", client.published[-1][1])

    assert len(snapshots) == 1


@pytest.mark.asyncio
async def test_upsert_echo_arriving_after_delete_is_ignored(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)
    await store.upsert("drv-1", {"active": True})
    stale_echo = client.published[-1][1]
    await store.delete("drv-1")
    snapshots: list[list[PresenceRecord]] = []
    store.subscribe(ACTIVE_ONLY, snapshots.append)

    store._apply_remote("drv-1", stale_echo)

    assert await store.fetch() == []
    assert snapshots == [[]]

    # Once the delete's own echo is back, later payloads apply again.
    store._apply_remote("drv-1", b"")
    store._apply_remote("drv-1", stale_echo)
    assert [r.driver_id for r in await store.fetch()] == ["drv-1"]


@pytest.mark.asyncio
async def test_newer_remote_record_after_delete_is_applied(clock: ManualClock) -> None:
    client = _FakeClient()
    store = _store(client, clock)
    await store.upsert("drv-1", {"active": True})
    await store.delete("drv-1")

    clock.advance(seconds=30)
    store._apply_remote("drv-1", _payload("drv-1", active=True, last_seen_at=clock()))

    (record,) = await store.fetch(ACTIVE_ONLY)
    assert record.last_seen_at == clock()


@pytest.mark.asyncio
@pytest.mark.parametrize("driver_id", ["a/b", "a+b", "drv#", ""])
async def test_unroutable_driver_id_is_rejected(clock: ManualClock, driver_id: str) -> None:
    client = _FakeClient()
    store = _store(client, clock)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.upsert(driver_id, {"active": True})

    assert exc_info.value.driver_id == driver_id
    assert client.published == []
    assert await store.fetch() == []
    with pytest.raises(StoreUnavailableError):
        await store.delete(driver_id)


@pytest.mark.asyncio
async def test_malformed_or_mismatched_payloads_are_dropped(clock: ManualClock) -> None:
    store = _store(_FakeClient(), clock)

    store._apply_remote("drv-1", b"{not json")
    store._apply_remote("drv-3", _payload("drv-2", active=True))

    assert await store.fetch() == []


def test_topic_mapping(clock: ManualClock) -> None:
    store = _store(_FakeClient(), clock, topic_prefix="campus/presence/")

    assert store.topic_for("drv-1") == "campus/presence/drv-1"
    with pytest.raises(StoreUnavailableError):
        store.topic_for("drv-1/extra")
    assert store._driver_from_topic("campus/presence/drv-1") == "drv-1"
    assert store._driver_from_topic("campus/presence/drv-1/extra") is None
    assert store._driver_from_topic("other/drv-1") is None


@pytest.mark.asyncio
async def test_connect_subscribes_and_receives_retained_records(clock: ManualClock) -> None:
    client = _FakeClient()

    async with _store(client, clock) as store:
        assert store.is_connected
        assert client.subscriptions == [("buspresence/drivers/+", 1)]

        client.deliver("buspresence/drivers/drv-7", _payload("drv-7", active=True))
        await asyncio.sleep(0)

        assert [r.driver_id for r in await store.fetch()] == ["drv-7"]

    assert client.disconnected
    with pytest.raises(StoreUnavailableError):
        await store.upsert("drv-7", {"active": False})


@pytest.mark.asyncio
async def test_connect_timeout_raises_store_unavailable(clock: ManualClock) -> None:
    client = _FakeClient(auto_connect=False)
    store = _store(client, clock, publish_timeout=0.05)

    with pytest.raises(StoreUnavailableError):
        await store.connect()

    assert client.disconnected
    assert not store.is_connected
