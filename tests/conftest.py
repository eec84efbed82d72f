from __future__ import annotations

import pytest
from fakes import ManualClock

from buspresence.models.presence import DriverIdentity
from buspresence.store.memory import InMemoryPresenceStore


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> InMemoryPresenceStore:
    return InMemoryPresenceStore(clock=clock)


@pytest.fixture
def driver() -> DriverIdentity:
    return DriverIdentity(
        driver_id="drv-1",
        is_verified_driver=True,
        display_name="Alice",
        email="alice@example.edu",
    )
