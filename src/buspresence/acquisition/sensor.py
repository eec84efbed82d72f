"""Device location capability interface and secure-context check."""

from __future__ import annotations

import ipaddress
from collections.abc import Callable
from typing import Protocol
from urllib.parse import urlsplit

from buspresence.acquisition.strategy import AcquisitionStrategy
from buspresence.exceptions import LocationError, UnsupportedContextError
from buspresence.models.position import PositionFix

FixCallback = Callable[[PositionFix], None]
ErrorCallback = Callable[[LocationError], None]

_SECURE_SCHEMES = frozenset({"https", "wss"})


class WatchHandle(Protocol):
    """Handle for a continuous position subscription."""

    def clear(self) -> None:
        """Cancel the subscription. Must be idempotent."""
        ...


class PositionSensor(Protocol):
    """Structural interface over a device's location capability.

    Adapters wrap the platform primitives (browser geolocation bridge, GPS
    daemon, simulator). Errors must be raised or reported as
    :class:`~buspresence.exceptions.LocationError` subclasses, and watch
    callbacks must be delivered on the event loop thread.
    """

    @property
    def is_supported(self) -> bool:
        ...

    async def get_current_position(self, strategy: AcquisitionStrategy) -> PositionFix:
        ...

    def watch_position(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        strategy: AcquisitionStrategy,
    ) -> WatchHandle:
        ...


def _is_loopback_host(host: str) -> bool:
    host = host.lower()
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def is_secure_origin(origin: str | None) -> bool:
    """Whether location may be requested from *origin*.

    ``None`` stands for a native context with no origin restriction.
    """
    if origin is None:
        return True
    parts = urlsplit(origin.strip())
    if parts.scheme.lower() in _SECURE_SCHEMES:
        return True
    return bool(parts.hostname) and _is_loopback_host(parts.hostname or "")


def ensure_location_supported(sensor: PositionSensor, origin: str | None) -> None:
    """Fail fast when acquisition cannot possibly succeed.

    Raises
    ------
    UnsupportedContextError
        For insecure origins or sensors without a location capability.
    """
    if not is_secure_origin(origin):
        raise UnsupportedContextError(
            f"Location requires HTTPS or localhost. Current origin: {origin}",
        )
    if not sensor.is_supported:
        raise UnsupportedContextError(
            "Location is not supported on this device",
            hint="This device or browser has no location capability. Try another device.",
        )
