"""Sources of scheduled (non-live) vehicles for the merged view."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from buspresence.exceptions import StoreUnavailableError
from buspresence.models.vehicle import VehicleView
from buspresence.store.base import Subscription

_logger = logging.getLogger(__name__)

VehicleCallback = Callable[[list[VehicleView]], None]


class VehicleFeed(Protocol):
    """Anything that pushes snapshots of scheduled vehicles."""

    def subscribe(self, on_snapshot: VehicleCallback) -> Subscription:
        ...


class _Fanout:
    def __init__(self) -> None:
        self._callbacks: list[VehicleCallback] = []

    def add(self, callback: VehicleCallback) -> Subscription:
        self._callbacks.append(callback)

        def cancel() -> None:
            self._callbacks = [c for c in self._callbacks if c is not callback]

        return Subscription(cancel)

    def __bool__(self) -> bool:
        return bool(self._callbacks)

    def emit(self, vehicles: list[VehicleView]) -> None:
        for callback in list(self._callbacks):
            try:
                callback(list(vehicles))
            except Exception:
                _logger.warning("Vehicle snapshot callback failed", exc_info=True)


class StaticVehicleFeed:
    """Fixed vehicle list; :meth:`update` replaces it and re-emits."""

    def __init__(self, vehicles: Iterable[VehicleView] = ()) -> None:
        self._vehicles = list(vehicles)
        self._fanout = _Fanout()

    @property
    def vehicles(self) -> list[VehicleView]:
        return list(self._vehicles)

    def update(self, vehicles: Iterable[VehicleView]) -> None:
        self._vehicles = list(vehicles)
        self._fanout.emit(self._vehicles)

    def subscribe(self, on_snapshot: VehicleCallback) -> Subscription:
        subscription = self._fanout.add(on_snapshot)
        on_snapshot(list(self._vehicles))
        return subscription


def parse_vehicles(payload: Any) -> list[VehicleView]:
    """Parse a vehicle list payload.

    Accepts either a bare JSON list or an object with a ``vehicles`` list.
    Rows that do not validate are skipped.
    """
    rows = payload.get("vehicles") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise ValueError("Vehicle payload is neither a list nor an object with a 'vehicles' list")
    vehicles: list[VehicleView] = []
    for index, row in enumerate(rows):
        try:
            vehicles.append(VehicleView.model_validate(row))
        except ValidationError as exc:
            _logger.warning("Skipping invalid vehicle row %d: %s", index, exc.errors(include_url=False))
    return vehicles


class HttpVehicleFeed:
    """Poll a JSON endpoint for scheduled vehicles.

    Polling starts with the first subscriber and stops with the last.
    Failed polls are logged and the previous snapshot is kept.

    Usage::

        async with HttpVehicleFeed(url) as feed:
            aggregator = PresenceAggregator(store, feed)
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        interval: float = 15.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._url = url
        self._interval = interval
        self._external_session = session is not None
        self._http_session = session
        self._vehicles: list[VehicleView] = []
        self._fanout = _Fanout()
        self._poller: asyncio.Task[None] | None = None

    async def __aenter__(self) -> HttpVehicleFeed:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def vehicles(self) -> list[VehicleView]:
        return list(self._vehicles)

    async def close(self) -> None:
        poller = self._poller
        self._poller = None
        if poller is not None and not poller.done():
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def fetch(self) -> list[VehicleView]:
        """Fetch the vehicle list once and emit it to subscribers.

        Raises
        ------
        StoreUnavailableError
            Transport failure, timeout, non-200 status or a body that is
            not a vehicle list.
        """
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        _logger.debug("GET %s", self._url)
        try:
            async with self._http_session.get(self._url) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise StoreUnavailableError(
                        f"HTTP {resp.status} from {self._url}: {text[:200]}",
                        status_code=resp.status,
                    )
        except StoreUnavailableError:
            raise
        except (aiohttp.ClientError, TimeoutError, UnicodeDecodeError) as exc:
            raise StoreUnavailableError(f"Request to {self._url} failed: {exc!r}") from exc

        try:
            vehicles = parse_vehicles(json.loads(text))
        except (json.JSONDecodeError, ValueError) as exc:
            raise StoreUnavailableError(f"Invalid vehicle list from {self._url}: {text[:200]}") from exc

        self._vehicles = vehicles
        self._fanout.emit(vehicles)
        return list(vehicles)

    def subscribe(self, on_snapshot: VehicleCallback) -> Subscription:
        inner = self._fanout.add(on_snapshot)
        if self._vehicles:
            on_snapshot(list(self._vehicles))
        if self._poller is None or self._poller.done():
            self._poller = asyncio.get_running_loop().create_task(self._poll())

        def cancel() -> None:
            inner.unsubscribe()
            if not self._fanout and self._poller is not None:
                self._poller.cancel()
                self._poller = None

        return Subscription(cancel)

    async def _poll(self) -> None:
        while True:
            try:
                await self.fetch()
            except StoreUnavailableError as exc:
                _logger.warning("Vehicle feed poll failed: %s", exc)
            except Exception:
                _logger.warning("Vehicle feed poll failed", exc_info=True)
            await asyncio.sleep(self._interval)
