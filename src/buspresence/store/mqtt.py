"""Presence store backed by retained MQTT messages.

Each driver's record is one retained JSON message on
``<topic_prefix>/<driver_id>``. Deleting publishes an empty retained
payload, which removes the message from the broker. Every client keeps a
local :class:`~buspresence.store.base.PresenceTable` fed by a wildcard
subscription, so the retained messages rebuild the full table on connect
and subsequent publishes stream in as changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from buspresence._redact import redact_for_log
from buspresence.config import PresenceConfig
from buspresence.exceptions import StoreUnavailableError
from buspresence.models.presence import PresenceRecord
from buspresence.store.base import PresenceTable, RecordFilter, SnapshotCallback, Subscription, _utcnow

_TOPIC_RESERVED = ("/", "+", "#", "\x00")


class MqttPresenceStore:
    """Threaded paho-mqtt client exposing the presence store contract.

    Usage::

        async with MqttPresenceStore(config) as store:
            subscription = store.subscribe(ACTIVE_ONLY, print)
    """

    def __init__(
        self,
        config: PresenceConfig,
        *,
        client: mqtt.Client | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = logger or logging.getLogger(__name__)
        self._table = PresenceTable(clock=clock)
        self._prefix = config.topic_prefix.rstrip("/")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = asyncio.Event()
        # driver id -> last_seen_at of the record we deleted
        self._tombstones: dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MqttPresenceStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def topic_for(self, driver_id: str) -> str:
        """Topic of *driver_id*'s retained record.

        Raises
        ------
        StoreUnavailableError
            The id is empty or contains a topic separator or wildcard, so no
            other client could map the topic back to it.
        """
        if not driver_id or any(char in driver_id for char in _TOPIC_RESERVED):
            raise StoreUnavailableError(f"Invalid driver id for MQTT topic: {driver_id!r}", driver_id=driver_id)
        return f"{self._prefix}/{driver_id}"

    def _driver_from_topic(self, topic: str) -> str | None:
        prefix = f"{self._prefix}/"
        if not topic.startswith(prefix):
            return None
        driver_id = topic[len(prefix) :]
        if not driver_id or "/" in driver_id:
            return None
        return driver_id

    def _build_client(self) -> mqtt.Client:
        config = self._config
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.mqtt_client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()
        return client

    async def connect(self) -> None:
        """Connect, subscribe to every driver topic and wait for the CONNACK."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        client = self._client or self._build_client()
        self._client = client
        config = self._config
        self._logger.debug(
            "MQTT presence store connecting settings=%s",
            redact_for_log(
                {
                    "host": config.mqtt_host,
                    "port": config.mqtt_port,
                    "username": config.mqtt_username,
                    "mqtt_password": config.mqtt_password,
                    "topic": f"{self._prefix}/+",
                }
            ),
        )

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected, subscribing topic=%s/+", self._prefix)
            c.subscribe(f"{self._prefix}/+", qos=1)
            loop.call_soon_threadsafe(self._connected.set)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            driver_id = self._driver_from_topic(msg.topic)
            if driver_id is None:
                self._logger.debug("Ignoring message on unexpected topic=%s", msg.topic)
                return
            loop.call_soon_threadsafe(self._apply_remote, driver_id, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._logger.debug("MQTT disconnected: %s", reason_code)
            loop.call_soon_threadsafe(self._connected.clear)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            await loop.run_in_executor(None, self._connect_blocking, client)
            await asyncio.wait_for(self._connected.wait(), config.publish_timeout)
        except (OSError, TimeoutError) as exc:
            await self.close()
            raise StoreUnavailableError(
                f"Could not connect to MQTT broker {config.mqtt_host}:{config.mqtt_port}: {exc}",
            ) from exc

    def _connect_blocking(self, client: mqtt.Client) -> None:
        client.connect(self._config.mqtt_host, self._config.mqtt_port, keepalive=self._config.mqtt_keepalive)
        client.loop_start()

    async def close(self) -> None:
        """Disconnect and stop the network loop. Safe to call repeatedly."""
        client = self._client
        self._client = None
        self._connected.clear()
        if client is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, client.disconnect)
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------

    async def upsert(self, driver_id: str, patch: Mapping[str, Any]) -> PresenceRecord:
        self.topic_for(driver_id)
        previous = self._table.get(driver_id)
        record = self._table.merge(driver_id, patch)
        payload = record.model_dump_json(by_alias=True).encode("utf-8")
        try:
            await self._publish(driver_id, payload)
        except StoreUnavailableError:
            if previous is None:
                self._table.remove(driver_id)
            else:
                self._table.put(previous)
            raise
        self._tombstones.pop(driver_id, None)
        self._logger.debug(
            "Published presence driver=%s record=%s",
            driver_id,
            redact_for_log(record),
        )
        self._table.notify()
        return record

    async def delete(self, driver_id: str) -> None:
        """Publish an empty retained payload and drop the local record.

        Echoes of earlier upserts that arrive after the delete are ignored
        until the empty-payload echo comes back.
        """
        await self._publish(driver_id, b"")
        removed = self._table.get(driver_id)
        if removed is not None and removed.last_seen_at is not None:
            self._tombstones[driver_id] = removed.last_seen_at
        if self._table.remove(driver_id):
            self._table.notify()

    async def fetch(self, record_filter: RecordFilter | None = None) -> list[PresenceRecord]:
        return self._table.snapshot(record_filter)

    def subscribe(self, record_filter: RecordFilter | None, on_change: SnapshotCallback) -> Subscription:
        return self._table.subscribe(record_filter, on_change)

    async def _publish(self, driver_id: str, payload: bytes) -> None:
        client = self._client
        topic = self.topic_for(driver_id)
        if client is None:
            raise StoreUnavailableError("MQTT presence store is not connected", driver_id=driver_id)

        info = client.publish(topic, payload, qos=1, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise StoreUnavailableError(
                f"Publish to {topic} failed: {mqtt.error_string(info.rc)}",
                driver_id=driver_id,
            )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self._config.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise StoreUnavailableError(f"Publish to {topic} failed: {exc}", driver_id=driver_id) from exc
        if not info.is_published():
            raise StoreUnavailableError(
                f"Publish to {topic} not acknowledged within {self._config.publish_timeout}s",
                driver_id=driver_id,
            )

    def _apply_remote(self, driver_id: str, payload: bytes) -> None:
        """Apply a broker message to the local table (event loop thread)."""
        if not payload:
            # Messages on a topic arrive in order, so every older echo has been seen.
            self._tombstones.pop(driver_id, None)
            if self._table.remove(driver_id):
                self._logger.debug("Remote delete driver=%s", driver_id)
                self._table.notify()
            return

        try:
            record = PresenceRecord.model_validate_json(payload)
        except ValidationError:
            self._logger.warning("Dropping malformed presence payload on driver=%s", driver_id, exc_info=True)
            return
        if record.driver_id != driver_id:
            self._logger.warning(
                "Dropping presence payload: topic driver=%s body driver=%s", driver_id, record.driver_id
            )
            return
        deleted_at = self._tombstones.get(driver_id)
        if deleted_at is not None:
            if record.last_seen_at is None or record.last_seen_at <= deleted_at:
                self._logger.debug("Ignoring presence from before delete driver=%s", driver_id)
                return
            del self._tombstones[driver_id]
        if self._table.get(driver_id) == record:
            # Echo of our own publish.
            return
        self._table.put(record)
        self._table.notify()
