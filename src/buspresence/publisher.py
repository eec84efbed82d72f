"""Driver-side live location sharing session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from buspresence._redact import redact_for_log
from buspresence.acquisition.acquirer import PositionAcquirer
from buspresence.acquisition.sensor import PositionSensor, WatchHandle
from buspresence.acquisition.strategy import AcquisitionStrategy
from buspresence.config import PresenceConfig
from buspresence.exceptions import (
    LocationError,
    PermissionDeniedError,
    PresenceError,
    StoreUnavailableError,
    UnauthorizedError,
)
from buspresence.models.position import PositionFix
from buspresence.models.presence import DriverIdentity, VehicleInfo
from buspresence.recency import Freshness, classify
from buspresence.state.machine import PublisherEvent, PublisherState, transition
from buspresence.store.base import PresenceStoreClient

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Session:
    """One start..stop run; its token guards against late updates."""

    def __init__(self, driver_id: str, watch: WatchHandle | None = None) -> None:
        self.driver_id = driver_id
        self.watch = watch
        self.pending: PositionFix | None = None
        self.wakeup = asyncio.Event()
        self.worker: asyncio.Task[None] | None = None


class PresencePublisher:
    """Share one driver's position through a presence store.

    The publisher acquires a first fix, writes the full presence record,
    then follows the sensor's continuous channel and merge-upserts each new
    position until :meth:`stop` is called.

    Usage::

        publisher = PresencePublisher(store, acquirer, sensor, config=config)
        await publisher.start(identity, VehicleInfo(vehicle_label="12"))
        ...
        await publisher.stop()
    """

    def __init__(
        self,
        store: PresenceStoreClient,
        acquirer: PositionAcquirer,
        sensor: PositionSensor,
        *,
        config: PresenceConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_fix: Callable[[PositionFix], None] | None = None,
        on_error: Callable[[PresenceError], None] | None = None,
    ) -> None:
        self._store = store
        self._acquirer = acquirer
        self._sensor = sensor
        self._config = config or PresenceConfig()
        self._clock = clock
        self._on_fix = on_fix
        self._on_error = on_error
        self._state = PublisherState.IDLE
        self._session: _Session | None = None
        self._current_fix: PositionFix | None = None
        self._last_published_at: datetime | None = None
        self._fatal_task: asyncio.Task[None] | None = None
        # Driver whose record could not be deleted; retried on the next stop or start.
        self._pending_delete: str | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PresencePublisher:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PublisherState:
        return self._state

    @property
    def is_sharing(self) -> bool:
        return self._state == PublisherState.SHARING

    @property
    def driver_id(self) -> str | None:
        return self._session.driver_id if self._session is not None else None

    @property
    def current_fix(self) -> PositionFix | None:
        return self._current_fix

    @property
    def last_published_at(self) -> datetime | None:
        """When the store last accepted a write from this publisher."""
        return self._last_published_at

    def freshness(self, now: datetime | None = None) -> Freshness:
        """Self-diagnostic: would viewers currently see this driver as live?"""
        return classify(
            self._last_published_at,
            now or self._clock(),
            self._config.recency_threshold_ms,
        )

    def _tracking_strategy(self) -> AcquisitionStrategy:
        config = self._config
        return AcquisitionStrategy(
            high_accuracy=config.tracking_high_accuracy,
            timeout_ms=config.tracking_timeout_ms,
            max_cache_age_ms=config.tracking_max_cache_age_ms,
            name="tracking",
        )

    def _set_state(self, event: PublisherEvent) -> None:
        previous = self._state
        self._state = transition(previous, event)
        _logger.debug("Publisher %s -> %s on %s", previous.value, self._state.value, event.value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, identity: DriverIdentity, vehicle: VehicleInfo | None = None) -> PositionFix:
        """Start sharing *identity*'s live position.

        Returns the first fix once it has been written to the store.

        Raises
        ------
        UnauthorizedError
            The identity is not a verified driver. Nothing is written.
        LocationError
            No fix could be acquired. The publisher stays idle.
        StoreUnavailableError
            The initial write failed. The publisher stays idle.
        """
        if not identity.is_verified_driver:
            raise UnauthorizedError(f"Driver {identity.driver_id} is not verified to share location")

        await self._settle_fatal()
        self._set_state(PublisherEvent.START_REQUESTED)
        previous = self._session
        self._session = None
        leftover = self._pending_delete
        self._pending_delete = None
        if previous is not None:
            await self._teardown(previous)
            if previous.driver_id != identity.driver_id:
                # A different driver on the same device must not leave the old record behind.
                await self._delete_quietly(previous.driver_id)
        if leftover is not None and leftover != identity.driver_id:
            await self._delete_quietly(leftover)
        replaces_own_record = leftover == identity.driver_id or (
            previous is not None and previous.driver_id == identity.driver_id
        )

        try:
            fix = await self._acquirer.acquire()
            vehicle = vehicle or VehicleInfo()
            patch: dict[str, Any] = {
                "display_name": identity.display_name,
                "email": identity.email,
                "vehicle_label": vehicle.vehicle_label,
                "route_label": vehicle.route_label,
                "active": True,
                **fix.to_patch(),
            }
            _logger.debug("Starting presence driver=%s patch=%s", identity.driver_id, redact_for_log(patch))
            await self._store.upsert(identity.driver_id, patch)
        except BaseException:
            self._set_state(PublisherEvent.START_FAILED)
            if replaces_own_record:
                await self._delete_quietly(identity.driver_id)
            raise

        self._current_fix = fix
        self._last_published_at = self._clock()

        session = _Session(identity.driver_id)
        self._session = session
        session.worker = asyncio.get_running_loop().create_task(self._run_updates(session))
        self._set_state(PublisherEvent.START_SUCCEEDED)
        try:
            session.watch = self._sensor.watch_position(
                lambda update: self._on_watch_fix(session, update),
                lambda error: self._on_watch_error(session, error),
                self._tracking_strategy(),
            )
        except LocationError as exc:
            await self._fail_session(session, exc)
            raise
        _logger.info("Sharing location for driver=%s", identity.driver_id)
        return fix

    async def stop(self, driver_id: str | None = None) -> None:
        """Stop sharing and delete the presence record.

        Idempotent: a no-op when nothing is being shared, or when *driver_id*
        names a driver this publisher is not sharing for. The continuous
        subscription is cancelled before anything is awaited, so late
        sensor callbacks cannot write again.

        A delete that failed earlier is retried here once the publisher is
        idle, and the error is raised again if the retry fails too.
        """
        await self._settle_fatal()
        session = self._session
        if session is None or self._state != PublisherState.SHARING:
            if self._state == PublisherState.IDLE:
                await self._retry_pending_delete(driver_id)
            return
        if driver_id is not None and driver_id != session.driver_id:
            _logger.debug("Ignoring stop for driver=%s, sharing driver=%s", driver_id, session.driver_id)
            return
        self._set_state(PublisherEvent.STOP_REQUESTED)
        self._session = None
        try:
            await self._teardown(session)
            try:
                await self._store.delete(session.driver_id)
            except StoreUnavailableError:
                self._pending_delete = session.driver_id
                raise
            _logger.info("Stopped sharing location for driver=%s", session.driver_id)
        finally:
            self._current_fix = None
            self._set_state(PublisherEvent.STOP_COMPLETED)

    async def _retry_pending_delete(self, driver_id: str | None) -> None:
        pending = self._pending_delete
        if pending is None or (driver_id is not None and driver_id != pending):
            return
        _logger.debug("Retrying presence delete driver=%s", pending)
        await self._store.delete(pending)
        if self._pending_delete == pending:
            self._pending_delete = None
        _logger.info("Stopped sharing location for driver=%s", pending)

    async def _settle_fatal(self) -> None:
        task = self._fatal_task
        self._fatal_task = None
        if task is not None:
            await task

    async def _teardown(self, session: _Session) -> None:
        if session.watch is not None:
            session.watch.clear()
            session.watch = None
        session.pending = None
        worker = session.worker
        session.worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    async def _delete_quietly(self, driver_id: str) -> None:
        try:
            await self._store.delete(driver_id)
        except StoreUnavailableError as exc:
            _logger.warning("Could not delete presence driver=%s: %s", driver_id, exc)
            self._pending_delete = driver_id
            self._report(exc)

    # ------------------------------------------------------------------
    # Continuous tracking
    # ------------------------------------------------------------------

    def _is_current(self, session: _Session) -> bool:
        return self._session is session and self._state == PublisherState.SHARING

    def _on_watch_fix(self, session: _Session, fix: PositionFix) -> None:
        if not self._is_current(session):
            _logger.debug("Discarding fix from cancelled session driver=%s", session.driver_id)
            return
        # Only the latest fix matters; older pending ones are superseded.
        session.pending = fix
        session.wakeup.set()

    def _on_watch_error(self, session: _Session, error: LocationError) -> None:
        if not self._is_current(session):
            return
        _logger.warning("Location tracking error driver=%s: %s", session.driver_id, error)
        self._report(error)
        if isinstance(error, PermissionDeniedError) and (self._fatal_task is None or self._fatal_task.done()):
            self._fatal_task = asyncio.get_running_loop().create_task(self._fail_session(session, error))

    async def _run_updates(self, session: _Session) -> None:
        while True:
            await session.wakeup.wait()
            session.wakeup.clear()
            fix = session.pending
            session.pending = None
            if fix is None or not self._is_current(session):
                continue
            try:
                await self._store.upsert(session.driver_id, fix.to_patch())
            except StoreUnavailableError as exc:
                _logger.warning("Presence update failed driver=%s: %s", session.driver_id, exc)
                self._report(exc)
                continue
            except Exception as exc:
                _logger.warning("Presence update failed driver=%s", session.driver_id, exc_info=True)
                self._report(
                    StoreUnavailableError(f"Presence update failed: {exc}", driver_id=session.driver_id)
                )
                continue
            self._current_fix = fix
            self._last_published_at = self._clock()
            if self._on_fix is not None:
                try:
                    self._on_fix(fix)
                except Exception:
                    _logger.warning("on_fix callback failed", exc_info=True)

    async def _fail_session(self, session: _Session, error: LocationError) -> None:
        """Fatal channel error: end the session without passing through Stopping."""
        if not self._is_current(session):
            return
        _logger.info("Ending session for driver=%s after fatal error: %s", session.driver_id, error)
        self._session = None
        self._set_state(PublisherEvent.FATAL_ERROR)
        self._current_fix = None
        await self._teardown(session)
        await self._delete_quietly(session.driver_id)

    def _report(self, error: PresenceError) -> None:
        if self._on_error is not None:
            self._on_error(error)
