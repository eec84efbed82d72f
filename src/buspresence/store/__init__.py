"""Presence store layer.

This package holds the only code allowed to merge presence patches into
records and to fan snapshots out to subscribers.
"""

from buspresence.store.base import (
    ACTIVE_ONLY,
    PresenceStoreClient,
    PresenceTable,
    RecordFilter,
    Subscription,
)
from buspresence.store.cleanup import sweep_stale
from buspresence.store.memory import InMemoryPresenceStore
from buspresence.store.mqtt import MqttPresenceStore

__all__ = [
    "ACTIVE_ONLY",
    "InMemoryPresenceStore",
    "MqttPresenceStore",
    "PresenceStoreClient",
    "PresenceTable",
    "RecordFilter",
    "Subscription",
    "sweep_stale",
]
