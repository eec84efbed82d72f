"""Storage reclamation policy.

Display freshness lives in :mod:`buspresence.recency`; this module only
decides when a record has been abandoned long enough to delete.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from buspresence._constants import CLEANUP_MAX_AGE_SECONDS
from buspresence.models.presence import PresenceRecord


def is_expired(now: datetime, expires_at: datetime) -> bool:
    return now >= expires_at


def is_abandoned(
    record: PresenceRecord,
    now: datetime,
    max_age: timedelta = timedelta(seconds=CLEANUP_MAX_AGE_SECONDS),
) -> bool:
    """Decide whether the cleanup sweep should delete *record*.

    Policy:
    - Age by ``last_seen_at``, falling back to ``first_seen_at``.
    - A record carrying neither timestamp cannot prove it is alive and is
      reclaimed.
    """
    seen = record.reclaim_timestamp
    if seen is None:
        return True
    return is_expired(now, seen + max_age)
