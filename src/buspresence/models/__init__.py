"""Pydantic models for buspresence."""

from buspresence.models._base import PresenceBaseModel, parse_timestamp
from buspresence.models.position import Coordinates, PositionFix
from buspresence.models.presence import DriverIdentity, PresenceRecord, VehicleInfo
from buspresence.models.vehicle import VehicleView

__all__ = [
    "Coordinates",
    "DriverIdentity",
    "PositionFix",
    "PresenceBaseModel",
    "PresenceRecord",
    "VehicleInfo",
    "VehicleView",
    "parse_timestamp",
]
