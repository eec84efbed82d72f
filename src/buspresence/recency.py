"""Recency classification of last-seen timestamps.

Shared by the driver-side "last update" display and the viewer-side
badge, so both agree on what "live" means.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from buspresence._constants import RECENCY_THRESHOLD_MS


class Freshness(StrEnum):
    LIVE = "live"
    STALE = "stale"


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_BADGES: dict[Freshness, str] = {
    Freshness.LIVE: "LIVE",
    Freshness.STALE: "OFFLINE",
}


def _epoch_ms(value: datetime | int | float | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return ((value - _EPOCH) // timedelta(microseconds=1)) / 1000.0
    if isinstance(value, (int, float)):
        return float(value)
    return None


def classify(
    last_seen_at: datetime | int | float | None,
    now: datetime | int | float,
    threshold_ms: int = RECENCY_THRESHOLD_MS,
) -> Freshness:
    """Classify how fresh *last_seen_at* is relative to *now*.

    Numbers are epoch milliseconds; naive datetimes are taken as UTC.
    ``LIVE`` iff ``now - last_seen_at < threshold_ms``, so timestamps in
    the future are live. Missing or unreadable input is ``STALE``; this
    function never raises.
    """
    seen_ms = _epoch_ms(last_seen_at)
    now_ms = _epoch_ms(now)
    if seen_ms is None or now_ms is None:
        return Freshness.STALE
    if now_ms - seen_ms < threshold_ms:
        return Freshness.LIVE
    return Freshness.STALE


def badge_label(freshness: Freshness) -> str:
    """Viewer badge text for a freshness state."""
    return _BADGES[freshness]


def format_age(
    last_seen_at: datetime | int | float | None,
    now: datetime | int | float,
) -> str:
    """Short "last update" text: ``Just now``, ``5m ago``, ``3h ago``.

    Anything a day or older is shown as its UTC date, and missing input as
    ``Unknown``. Timestamps in the future read as ``Just now``.
    """
    seen_ms = _epoch_ms(last_seen_at)
    now_ms = _epoch_ms(now)
    if seen_ms is None or now_ms is None:
        return "Unknown"
    minutes = int((now_ms - seen_ms) // 60_000)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{_EPOCH + timedelta(milliseconds=seen_ms):%Y-%m-%d}"
