"""Out-of-band sweep that reclaims abandoned presence records."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from buspresence._constants import CLEANUP_MAX_AGE_SECONDS
from buspresence.exceptions import StoreUnavailableError
from buspresence.state.policy import is_abandoned
from buspresence.store.base import PresenceStoreClient

_logger = logging.getLogger(__name__)


async def sweep_stale(
    store: PresenceStoreClient,
    *,
    now: datetime | None = None,
    max_age: timedelta = timedelta(seconds=CLEANUP_MAX_AGE_SECONDS),
) -> list[str]:
    """Delete records left behind by sessions that never called ``stop``.

    Returns the driver ids that were deleted. A failed delete is logged and
    the sweep continues with the next record.
    """
    now = now or datetime.now(UTC)
    deleted: list[str] = []
    for record in await store.fetch():
        if not is_abandoned(record, now, max_age):
            continue
        try:
            await store.delete(record.driver_id)
        except StoreUnavailableError:
            _logger.warning("Could not reclaim presence driver=%s", record.driver_id, exc_info=True)
            continue
        deleted.append(record.driver_id)
    if deleted:
        _logger.info("Reclaimed %d abandoned presence records", len(deleted))
    return deleted
