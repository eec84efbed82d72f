#!/usr/bin/env python3
"""Operator tool for the MQTT presence table.

Commands:

``watch``
    Print the merged live view with LIVE/OFFLINE badges every time the
    presence table changes, plus a periodic freshness refresh.
``sweep``
    Delete presence records abandoned for longer than ``--max-age-hours``.

Broker settings come from the ``PRESENCE_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from buspresence import (  # noqa: E402
    HttpVehicleFeed,
    MqttPresenceStore,
    PresenceAggregator,
    PresenceConfig,
    PresenceError,
    VehicleView,
    badge_label,
    format_age,
    sweep_stale,
)
from buspresence.recency import Freshness  # noqa: E402

_LOG = logging.getLogger("presence_monitor")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and maintain the live bus presence table.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Print the merged live view as it changes.")
    watch.add_argument(
        "--refresh-seconds",
        type=float,
        default=30.0,
        help="Re-print freshness badges every N seconds even without changes.",
    )
    watch.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )

    sweep = sub.add_parser("sweep", help="Delete abandoned presence records.")
    sweep.add_argument(
        "--max-age-hours",
        type=float,
        default=None,
        help="Reclaim records older than this (default: PRESENCE_CLEANUP_MAX_AGE_S).",
    )
    sweep.add_argument(
        "--settle-seconds",
        type=float,
        default=2.0,
        help="Wait this long after connecting so retained records arrive.",
    )
    return parser.parse_args()


def _format_row(row: VehicleView, freshness: Freshness | None, now: datetime) -> str:
    badge = badge_label(freshness) if freshness is not None else "SCHEDULED"
    seen = format_age(row.last_updated, now) if row.last_updated is not None else "-"
    return (
        f"{badge:<9} {row.label:<12} {row.route:<16} "
        f"{row.latitude:>10.5f} {row.longitude:>11.5f} speed={row.speed:.1f} seen={seen}"
    )


def _print_view(aggregator: PresenceAggregator) -> None:
    now = datetime.now(UTC)
    freshness = aggregator.freshness(now)
    rows = aggregator.view
    print(f"[monitor] {len(rows)} vehicles")
    for row in rows:
        print(f"[monitor] {_format_row(row, freshness.get(row.id) if row.is_live else None, now)}")


async def _watch(config: PresenceConfig, args: argparse.Namespace) -> int:
    changed = asyncio.Event()
    async with contextlib.AsyncExitStack() as stack:
        store = await stack.enter_async_context(MqttPresenceStore(config))
        feed = None
        if config.vehicles_url:
            feed = await stack.enter_async_context(
                HttpVehicleFeed(config.vehicles_url, interval=config.vehicles_poll_interval)
            )
        aggregator = await stack.enter_async_context(
            PresenceAggregator(
                store,
                feed,
                threshold_ms=config.recency_threshold_ms,
                on_view=lambda _rows: changed.set(),
            )
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            try:
                await asyncio.wait_for(changed.wait(), args.refresh_seconds)
            except TimeoutError:
                pass
            changed.clear()
            _print_view(aggregator)
            if args.duration > 0 and loop.time() - started >= args.duration:
                print(f"[monitor] Reached --duration={args.duration}s, stopping.")
                return 0


async def _sweep(config: PresenceConfig, args: argparse.Namespace) -> int:
    max_age_s = args.max_age_hours * 3600 if args.max_age_hours is not None else config.cleanup_max_age_s
    async with MqttPresenceStore(config) as store:
        await asyncio.sleep(args.settle_seconds)
        deleted = await sweep_stale(store, max_age=timedelta(seconds=max_age_s))
    for driver_id in deleted:
        print(f"[monitor] reclaimed {driver_id}")
    print(f"[monitor] {len(deleted)} records reclaimed")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = PresenceConfig.from_env()
    except PresenceError as exc:
        print(f"[monitor] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    command = _watch if args.command == "watch" else _sweep
    try:
        return asyncio.run(command(config, args))
    except KeyboardInterrupt:
        return 0
    except PresenceError as exc:
        _LOG.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(_main())
