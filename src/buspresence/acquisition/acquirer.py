"""Layered position acquisition with strategy fallback."""

from __future__ import annotations

import asyncio
import logging

from buspresence._constants import SENSOR_TIMEOUT_GRACE_S
from buspresence.acquisition.sensor import PositionSensor, WatchHandle, ensure_location_supported
from buspresence.acquisition.strategy import AcquisitionPolicy, AcquisitionStrategy
from buspresence.config import DeviceProfile
from buspresence.exceptions import (
    LocationError,
    LocationTimeoutError,
    PermissionDeniedError,
    PositionUnavailableError,
    UnsupportedContextError,
)
from buspresence.models.position import PositionFix

_logger = logging.getLogger(__name__)

# The device will answer these the same way for every strategy.
_NOT_RETRIED: tuple[type[LocationError], ...] = (PermissionDeniedError, UnsupportedContextError)


def _classify(exc: Exception, strategy: AcquisitionStrategy) -> LocationError:
    if isinstance(exc, LocationError):
        return exc
    if isinstance(exc, TimeoutError):
        return LocationTimeoutError(f"Strategy {strategy.name} timed out after {strategy.timeout_ms} ms")
    return PositionUnavailableError(f"Strategy {strategy.name} failed: {exc}")


class PositionAcquirer:
    """Obtain one fix from a sensor, trying progressively different strategies.

    Usage::

        acquirer = PositionAcquirer.for_device(sensor, config.device)
        fix = await acquirer.acquire()
    """

    def __init__(
        self,
        sensor: PositionSensor,
        policy: AcquisitionPolicy,
        *,
        origin: str | None = None,
    ) -> None:
        self._sensor = sensor
        self._policy = policy
        self._origin = origin

    @classmethod
    def for_device(cls, sensor: PositionSensor, device: DeviceProfile) -> PositionAcquirer:
        return cls(sensor, AcquisitionPolicy.for_device(device), origin=device.origin)

    @property
    def policy(self) -> AcquisitionPolicy:
        return self._policy

    async def acquire(self, options: AcquisitionStrategy | None = None) -> PositionFix:
        """Return the first fix any strategy produces.

        Parameters
        ----------
        options : AcquisitionStrategy or None
            Caller-preferred strategy, tried before the policy's own list.

        Raises
        ------
        UnsupportedContextError
            Before any attempt, for insecure origins or missing capability.
        PermissionDeniedError
            As soon as any strategy is denied; later strategies are skipped.
        LocationError
            The last failure once every strategy and the watch fallback failed.
        """
        ensure_location_supported(self._sensor, self._origin)

        last_error: LocationError | None = None
        for attempt, strategy in enumerate(self._policy.with_preferred(options), start=1):
            _logger.debug(
                "Location attempt %d strategy=%s high_accuracy=%s timeout_ms=%d max_cache_age_ms=%d",
                attempt,
                strategy.name,
                strategy.high_accuracy,
                strategy.timeout_ms,
                strategy.max_cache_age_ms,
            )
            try:
                fix = await asyncio.wait_for(
                    self._sensor.get_current_position(strategy),
                    strategy.timeout_seconds + SENSOR_TIMEOUT_GRACE_S,
                )
            except Exception as exc:  # noqa: BLE001 - classified below
                last_error = _classify(exc, strategy)
                _logger.debug("Strategy %s failed: %s (%s)", strategy.name, last_error, last_error.kind.value)
                if isinstance(last_error, _NOT_RETRIED):
                    _logger.info("Location acquisition stopped: %s", last_error)
                    if last_error is exc:
                        raise
                    raise last_error from exc
                continue
            _logger.debug("Strategy %s succeeded accuracy=%s", strategy.name, fix.accuracy)
            return fix

        watch = self._policy.watch_fallback
        if watch is not None:
            try:
                fix = await self._watch_once(watch)
            except LocationError as exc:
                last_error = exc
                _logger.debug("Watch fallback failed: %s (%s)", exc, exc.kind.value)
            else:
                _logger.debug("Watch fallback succeeded accuracy=%s", fix.accuracy)
                return fix

        assert last_error is not None  # noqa: S101 - policy guarantees one attempt
        _logger.info("All location strategies failed: %s", last_error)
        raise last_error

    async def _watch_once(self, strategy: AcquisitionStrategy) -> PositionFix:
        """Subscribe to the continuous channel, keep the first fix, unsubscribe."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[PositionFix] = loop.create_future()

        def on_fix(fix: PositionFix) -> None:
            if not future.done():
                future.set_result(fix)

        def on_error(error: LocationError) -> None:
            if not future.done():
                future.set_exception(error)

        handle: WatchHandle | None = None
        try:
            handle = self._sensor.watch_position(on_fix, on_error, strategy)
            return await asyncio.wait_for(future, strategy.timeout_seconds)
        except TimeoutError as exc:
            raise LocationTimeoutError(
                f"Watch fallback produced no fix within {strategy.timeout_ms} ms",
            ) from exc
        except LocationError:
            raise
        except Exception as exc:
            raise _classify(exc, strategy) from exc
        finally:
            if handle is not None:
                handle.clear()
