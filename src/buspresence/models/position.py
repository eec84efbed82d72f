"""Geographic position models."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator

from buspresence.models._base import PresenceBaseModel, PresenceTimestamp, is_negative, normalize_heading


class Coordinates(PresenceBaseModel):
    """A latitude/longitude pair in degrees."""

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class PositionFix(PresenceBaseModel):
    """One reading from the device's location sensor.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    accuracy : float or None
        Radius of the 95% confidence circle, in metres.
    heading : float or None
        Direction of travel in degrees clockwise from true north, folded
        into ``[0, 360)``. ``None`` when unknown (e.g. stationary).
    speed : float or None
        Ground speed in metres per second.
    timestamp : datetime
        When the fix was taken.
    """

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {
        "accuracy": is_negative,
        "speed": is_negative,
    }

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None
    timestamp: PresenceTimestamp = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("heading", mode="before")
    @classmethod
    def _fold_heading(cls, value: Any) -> float | None:
        return normalize_heading(value)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)

    def to_patch(self) -> dict[str, Any]:
        """Position-only fields for a merge-upsert of a presence record.

        Unknown heading/speed/accuracy are written as ``None`` so an old
        value is not shown as current.
        """
        return {
            "position": {"latitude": self.latitude, "longitude": self.longitude},
            "accuracy_meters": self.accuracy,
            "heading_degrees": self.heading,
            "speed_meters_per_second": self.speed,
        }
