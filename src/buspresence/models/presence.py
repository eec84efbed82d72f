"""Presence record and driver identity models."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator

from buspresence.models._base import PresenceBaseModel, PresenceTimestamp, is_negative, normalize_heading
from buspresence.models.position import Coordinates


class PresenceRecord(PresenceBaseModel):
    """The live location entry of one sharing driver.

    Keyed by ``driver_id``; at most one exists per driver. Documents written
    by the original web client (flat ``latitude``/``longitude``,
    ``isActive``, ``lastSeen``, ``busNumber``...) are accepted as well.

    A record with ``active=True`` but no ``position`` is representable
    because it can exist in a shared store; readers drop such records.
    """

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "userId": "driverId",
        "isActive": "active",
        "lastSeen": "lastSeenAt",
        "busNumber": "vehicleLabel",
        "route": "routeLabel",
        "accuracy": "accuracyMeters",
        "heading": "headingDegrees",
        "speed": "speedMetersPerSecond",
    }

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {
        "accuracy_meters": is_negative,
        "speed_meters_per_second": is_negative,
    }

    driver_id: str = Field(..., min_length=1)
    display_name: str | None = None
    email: str | None = None
    vehicle_label: str | None = None
    route_label: str | None = None
    position: Coordinates | None = None
    accuracy_meters: float | None = None
    heading_degrees: float | None = None
    speed_meters_per_second: float | None = None
    active: bool = False
    last_seen_at: PresenceTimestamp = None
    first_seen_at: PresenceTimestamp = None

    @classmethod
    def _reshape(cls, values: dict[str, Any]) -> dict[str, Any]:
        if "position" in values:
            return values
        latitude = values.pop("latitude", None)
        longitude = values.pop("longitude", None)
        if latitude is not None and longitude is not None:
            values["position"] = {"latitude": latitude, "longitude": longitude}
        return values

    @field_validator("driver_id", mode="before")
    @classmethod
    def _strip_driver_id(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("heading_degrees", mode="before")
    @classmethod
    def _fold_heading(cls, value: Any) -> float | None:
        return normalize_heading(value)

    @property
    def is_live_candidate(self) -> bool:
        """Whether this record can be shown on a map."""
        return self.active and self.position is not None

    @property
    def reclaim_timestamp(self) -> datetime | None:
        """Timestamp the cleanup sweep ages this record by."""
        return self.last_seen_at or self.first_seen_at


class DriverIdentity(PresenceBaseModel):
    """Identity supplied by the authentication/verification collaborator."""

    driver_id: str = Field(..., min_length=1)
    is_verified_driver: bool = False
    display_name: str | None = None
    email: str | None = None


class VehicleInfo(PresenceBaseModel):
    """Descriptive fields a driver shares alongside their position."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "busNumber": "vehicleLabel",
        "route": "routeLabel",
    }

    vehicle_label: str | None = None
    route_label: str | None = None
