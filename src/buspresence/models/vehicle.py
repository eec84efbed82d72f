"""Merged vehicle view rows."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field, field_validator

from buspresence.models._base import PresenceBaseModel, PresenceTimestamp, normalize_heading


class VehicleView(PresenceBaseModel):
    """One renderable vehicle: a scheduled bus or a live driver.

    Parameters
    ----------
    id : str
        Vehicle id for static rows, driver id for live rows.
    label : str
        Bus number or placeholder.
    route : str
        Route name.
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    status : str
        Schedule status (``"active"``, ``"inactive"``, ``"maintenance"``).
    speed : float
        Ground speed in metres per second.
    last_updated : datetime or None
        Last time the position changed.
    is_live : bool
        ``True`` for rows projected from a presence record.
    driver_name : str or None
        Display name of the sharing driver (live rows only).
    heading : float or None
        Direction of travel in degrees.
    """

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "busId": "label",
        "busNumber": "label",
        "isLiveDriver": "isLive",
    }

    id: str
    label: str = ""
    route: str = ""
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    status: str = "active"
    speed: float = 0.0
    last_updated: PresenceTimestamp = None
    is_live: bool = False
    driver_name: str | None = None
    heading: float | None = None

    @field_validator("id", "label", "route", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("heading", mode="before")
    @classmethod
    def _fold_heading(cls, value: Any) -> float | None:
        return normalize_heading(value)
