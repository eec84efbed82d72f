from __future__ import annotations

import pytest
from fakes import FakeSensor, make_acquirer, make_fix

from buspresence.acquisition.acquirer import PositionAcquirer
from buspresence.acquisition.sensor import is_secure_origin
from buspresence.acquisition.strategy import QUICK, AcquisitionPolicy, AcquisitionStrategy
from buspresence.config import DeviceProfile, FormFactor
from buspresence.exceptions import (
    LocationTimeoutError,
    PermissionDeniedError,
    PositionUnavailableError,
    UnsupportedContextError,
)

MOBILE = DeviceProfile(form_factor=FormFactor.MOBILE)


@pytest.mark.asyncio
async def test_third_strategy_wins_without_watch_fallback() -> None:
    fix = make_fix()
    sensor = FakeSensor([LocationTimeoutError("t1"), LocationTimeoutError("t2"), fix])

    result = await make_acquirer(sensor).acquire()

    assert result == fix
    assert sensor.call_names == ["quick", "cached", "fresh"]
    assert sensor.watches == []


@pytest.mark.asyncio
async def test_mobile_order_prefers_cached_fixes() -> None:
    sensor = FakeSensor(watch_outcome=PositionUnavailableError("watch failed"))

    with pytest.raises(PositionUnavailableError):
        await make_acquirer(sensor, MOBILE).acquire()

    assert sensor.call_names == ["cached", "network", "precise"]
    assert [w.strategy.name for w in sensor.watches] == ["watch"]


@pytest.mark.asyncio
async def test_permission_denied_stops_the_cascade() -> None:
    sensor = FakeSensor([PermissionDeniedError("denied"), make_fix()])

    with pytest.raises(PermissionDeniedError):
        await make_acquirer(sensor).acquire()

    assert sensor.call_names == ["quick"]
    assert sensor.watches == []


@pytest.mark.asyncio
async def test_insecure_origin_rejected_before_any_sensor_call() -> None:
    sensor = FakeSensor([make_fix()])
    device = DeviceProfile(origin="http://tracker.example.edu")

    with pytest.raises(UnsupportedContextError) as exc_info:
        await make_acquirer(sensor, device).acquire()

    assert sensor.calls == []
    assert exc_info.value.hint


@pytest.mark.asyncio
async def test_unsupported_sensor_rejected() -> None:
    sensor = FakeSensor([make_fix()], supported=False)

    with pytest.raises(UnsupportedContextError):
        await make_acquirer(sensor).acquire()

    assert sensor.calls == []


@pytest.mark.asyncio
async def test_watch_fallback_supplies_fix_and_is_cleared() -> None:
    fix = make_fix(latitude=1.0, longitude=2.0)
    sensor = FakeSensor(watch_outcome=fix)

    result = await make_acquirer(sensor).acquire()

    assert result == fix
    assert len(sensor.calls) == 3
    assert sensor.watches[0].handle.clear_calls == 1


@pytest.mark.asyncio
async def test_watch_fallback_times_out() -> None:
    sensor = FakeSensor()
    watch = AcquisitionStrategy(high_accuracy=False, timeout_ms=20, max_cache_age_ms=0, name="watch")
    acquirer = PositionAcquirer(sensor, AcquisitionPolicy(strategies=(QUICK,), watch_fallback=watch))

    with pytest.raises(LocationTimeoutError):
        await acquirer.acquire()

    assert sensor.watches[0].handle.cleared


@pytest.mark.asyncio
async def test_raw_sensor_failures_are_classified() -> None:
    policy = AcquisitionPolicy(strategies=(QUICK,), watch_fallback=None)

    with pytest.raises(LocationTimeoutError):
        await PositionAcquirer(FakeSensor([TimeoutError()]), policy).acquire()
    with pytest.raises(PositionUnavailableError) as exc_info:
        await PositionAcquirer(FakeSensor([RuntimeError("bridge crashed")]), policy).acquire()
    assert "bridge crashed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_caller_options_tried_first_and_deduplicated() -> None:
    preferred = AcquisitionStrategy(high_accuracy=True, timeout_ms=10_000, max_cache_age_ms=60_000, name="mine")
    sensor = FakeSensor(watch_outcome=PositionUnavailableError("nothing"))

    with pytest.raises(PositionUnavailableError):
        await make_acquirer(sensor).acquire(preferred)

    assert sensor.call_names == ["mine", "cached", "fresh"]


@pytest.mark.parametrize(
    ("origin", "secure"),
    [
        (None, True),
        ("https://tracker.example.edu", True),
        ("http://localhost:5173", True),
        ("http://127.0.0.1:8080", True),
        ("http://[::1]:3000", True),
        ("http://tracker.example.edu", False),
        ("http://192.168.1.20:5173", False),
    ],
)
def test_is_secure_origin(origin: str | None, secure: bool) -> None:
    assert is_secure_origin(origin) is secure
