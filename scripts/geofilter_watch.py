#!/usr/bin/env python3
"""Watch geofiltered FDPS position subscriptions.

Connects to the broker configured through ``FDPS_*`` environment
variables, subscribes either the whole feed or the covering filters of a
bounding box, and prints every position report that arrives. The summary
shows how many reports fell inside the requested box and which covering
filter each report matched, so a loose grid is easy to spot.

Examples::

    python scripts/geofilter_watch.py --duration 60
    python scripts/geofilter_watch.py --min-lat 35 --max-lat 36 --min-lon -100 --max-lon -99
    python scripts/geofilter_watch.py --min-lat 35 --max-lat 36 --min-lon -100 --max-lon -99 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyfdps import FdpsClient, FdpsConfig, FdpsError, FlightPosition, Rectangle  # noqa: E402
from pyfdps.matching import topic_matches_filter  # noqa: E402

_LOG = logging.getLogger("geofilter_watch")


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


@dataclass
class CoverageStats:
    """Per-run tally of where reports landed relative to the requested box."""

    bounds: Bounds | None
    total_messages: int = 0
    in_box: int = 0
    out_of_box: int = 0
    filter_hits: Counter[str] = field(default_factory=Counter)

    def on_position(self, topic: str, event: FlightPosition, filters: tuple[str, ...]) -> bool | None:
        """Record *event*; returns whether it lies in the box, ``None`` without one."""
        self.total_messages += 1
        for topic_filter in filters:
            if topic_matches_filter(topic_filter, topic):
                self.filter_hits[topic_filter] += 1
        if self.bounds is None or event.lat is None or event.lon is None:
            return None
        inside = self.bounds.contains(event.lat, event.lon)
        if inside:
            self.in_box += 1
        else:
            self.out_of_box += 1
        return inside


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Subscribe to the FDPS position feed inside a bounding box.",
    )
    parser.add_argument("--min-lat", type=float, help="Southern edge in degrees.")
    parser.add_argument("--max-lat", type=float, help="Northern edge in degrees.")
    parser.add_argument("--min-lon", type=float, help="Western edge in degrees.")
    parser.add_argument("--max-lon", type=float, help="Eastern edge in degrees.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the covering filters and exit without connecting.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _bounds_from_args(args: argparse.Namespace) -> Bounds | None:
    values = (args.min_lat, args.max_lat, args.min_lon, args.max_lon)
    if all(value is None for value in values):
        return None
    if any(value is None for value in values):
        raise SystemExit("--min-lat, --max-lat, --min-lon and --max-lon must be given together")
    return Bounds(min_lat=args.min_lat, max_lat=args.max_lat, min_lon=args.min_lon, max_lon=args.max_lon)


def _region_for(bounds: Bounds | None) -> Rectangle | None:
    if bounds is None:
        return None
    return Rectangle.from_bounds(
        min_lat=bounds.min_lat,
        max_lat=bounds.max_lat,
        min_lon=bounds.min_lon,
        max_lon=bounds.max_lon,
    )


def _print_summary(stats: CoverageStats, filters: tuple[str, ...], runtime: float) -> None:
    print("[watch] Summary")
    print(f"[watch]   runtime_s      : {runtime:.1f}")
    print(f"[watch]   total_messages : {stats.total_messages}")
    if stats.bounds is not None:
        print(f"[watch]   in_box         : {stats.in_box}")
        print(f"[watch]   out_of_box     : {stats.out_of_box}")
    print(f"[watch]   filters        : {len(filters)}")
    for topic_filter in filters:
        print(f"[watch]     {stats.filter_hits[topic_filter]:>8}  {topic_filter}")


async def _run(args: argparse.Namespace, config: FdpsConfig, bounds: Bounds | None) -> int:
    started_at = time.monotonic()
    stats = CoverageStats(bounds=bounds)
    filters: tuple[str, ...] = ()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    def on_position(topic: str, event: FlightPosition) -> None:
        inside = stats.on_position(topic, event, filters)
        where = "" if inside is None else (" in-box" if inside else " OUT-OF-BOX")
        print(
            f"[watch] msg#{stats.total_messages}{where} aircraft={event.aircraft_id} "
            f"lat={event.lat} lon={event.lon} alt={event.altitude} speed={event.speed}",
        )
        _LOG.debug("topic=%s bytes=%d", topic, len(event.payload))

    region = _region_for(bounds)
    print(f"[watch] Connecting to {config.broker_host}:{config.broker_port}...")
    try:
        async with FdpsClient(config, on_position=on_position) as client:
            if region is not None:
                client.on_regions_changed([region])
                await client.flush()
            filters = client.active_filters
            for topic_filter in filters:
                print(f"[watch] subscribed {topic_filter}")

            timeout = args.duration if args.duration > 0 else None
            try:
                await asyncio.wait_for(stop.wait(), timeout)
            except TimeoutError:
                print(f"[watch] Reached --duration={args.duration}s, stopping.")
    except FdpsError as exc:  # pragma: no cover - network/system interaction
        print(f"[watch] {exc}", file=sys.stderr)
        return 2

    _print_summary(stats, filters, time.monotonic() - started_at)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = FdpsConfig.from_env()
    bounds = _bounds_from_args(args)

    if args.dry_run:
        client = FdpsClient(config)
        region = _region_for(bounds)
        for topic_filter in client.synchronizer.filters_for([] if region is None else [region]):
            print(topic_filter)
        return 0

    return asyncio.run(_run(args, config, bounds))


if __name__ == "__main__":
    raise SystemExit(_main())
