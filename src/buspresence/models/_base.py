"""Base model and shared coercions for presence documents.

Every presence model inherits from :class:`PresenceBaseModel` which
provides:

* ``alias_generator=to_camel`` so the camelCase keys written by web
  clients map automatically to snake_case fields.
* A ``model_validator(mode="before")`` that applies legacy key aliases,
  strips sentinel values (``None``, ``""``, NaN) so the field default is
  used, then hands the cleaned dict to the ``_reshape`` hook.
* Post-construction sentinel normalisation via ``_SENTINEL_RULES``.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

_SENTINELS = frozenset({"", "--", "NaN", "nan"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def is_negative(value: int | float) -> bool:
    """Return ``True`` when *value* is negative (the "unknown" sentinel)."""
    return value < 0


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a stored timestamp to a UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch seconds or
    milliseconds, ISO-8601 strings and document-store timestamp objects of
    the form ``{"seconds": ..., "nanoseconds": ...}``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, dict) and "seconds" in value:
        seconds = float(value["seconds"]) + float(value.get("nanoseconds", 0)) / 1e9
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


PresenceTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces stored timestamps to UTC datetimes."""


def normalize_heading(value: Any) -> float | None:
    """Fold a compass heading into ``[0, 360)``; unknown stays ``None``."""
    if value is None:
        return None
    heading = float(value)
    if not math.isfinite(heading):
        return None
    return heading % 360.0


class PresenceBaseModel(BaseModel):
    """Base for presence documents and view rows."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {}
    """Legacy document keys mapped onto current camelCase keys."""

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {}
    """Per-field predicates; a matching value is replaced by ``None``."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any], aliases: dict[str, str] | None = None) -> dict[str, Any]:
        working = dict(values)
        if aliases:
            for old_key, new_key in aliases.items():
                if old_key in working and new_key not in working:
                    working[new_key] = working.pop(old_key)

        cleaned: dict[str, Any] = {}
        for key, value in working.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @classmethod
    def _reshape(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Subclass hook to restructure the cleaned input dict."""
        return values

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        aliases: dict[str, str] = getattr(cls, "_KEY_ALIASES", {})
        return cls._reshape(PresenceBaseModel._clean_dict(values, aliases))

    @model_validator(mode="after")
    def _normalise_sentinels(self) -> PresenceBaseModel:
        sentinel_rules: dict[str, Callable[..., bool]] = getattr(type(self), "_SENTINEL_RULES", {})
        for field_name, predicate in sentinel_rules.items():
            val = getattr(self, field_name, None)
            if val is not None and predicate(val):
                object.__setattr__(self, field_name, None)
        return self
