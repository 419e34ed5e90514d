#!/usr/bin/env python3
"""
Journey Tracker command line tool.

Composes a walking route through the waypoints of a GPX file using an OSRM
server and, given a recorded GPX track, replays it through a journey session
printing progress, speed and arrival estimates for every fix.

"""

from typing import List, Optional
import argparse
import asyncio
import logging
import sys
from gpxpy import gpx

from . import __version__
from .config import JourneyConfig, ProjectionMethod
from .errors import JourneyError
from .eta import format_arrival_time, format_remaining_time, format_speed
from .geometry import GeoPoint
from .gpx_io import read_track_samples, read_waypoints, route_to_gpx
from .metrics import log_metrics
from .route import Route
from .routing import (
    DEFAULT_API_TIMEOUT,
    DEFAULT_OSRM_PROFILE,
    DEFAULT_OSRM_URL,
    OSRMRoutingService,
)
from .session import JourneySession, JourneySnapshot, JourneyState, PositionSample

# Configure logging
logger = logging.getLogger("journeytracker")


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Walking journey progress and arrival estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "filename",
        type=str,
        nargs="?",
        help="GPX file with the journey waypoints (<wpt> or <rte> points)",
    )
    parser.add_argument(
        "--track",
        type=str,
        default=None,
        help="Recorded GPX track to replay as position samples",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the composed route to this GPX file",
    )
    parser.add_argument(
        "--osrm-url",
        type=str,
        default=DEFAULT_OSRM_URL,
        help=f"OSRM server base URL (default: {DEFAULT_OSRM_URL})",
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=DEFAULT_OSRM_PROFILE,
        help=f"OSRM profile used for walking legs (default: {DEFAULT_OSRM_PROFILE})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_API_TIMEOUT,
        help=f"Routing request timeout in seconds (default: {DEFAULT_API_TIMEOUT})",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=2,
        help="Retries for rate-limited or failed routing requests (default: 2)",
    )
    parser.add_argument(
        "--projection",
        type=str,
        default=ProjectionMethod.VERTEX.value,
        choices=[method.value for method in ProjectionMethod],
        help="Match positions to the nearest route vertex or route segment (default: vertex)",
    )
    parser.add_argument(
        "--default-speed",
        type=float,
        default=1.4,
        help="Speed assumed before any sample is accepted, in m/s (default: 1.4)",
    )
    parser.add_argument(
        "--arrival-radius",
        type=float,
        default=50.0,
        help="Distance from the destination counted as arrival, in meters (default: 50)",
    )
    parser.add_argument(
        "--min-sample-interval",
        type=float,
        default=2.0,
        help="Minimum seconds between samples used for speed (default: 2.0)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: WARNING)",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Output structured metrics after processing",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"journeytracker {__version__}",
    )
    return parser


def setup_logging(args: argparse.Namespace) -> None:
    """Setup logging configuration."""
    level = getattr(logging, args.log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Configure the root logger so all modules inherit the configuration
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress overly verbose third-party logging
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> JourneyConfig:
    """Build the session configuration from command-line options."""
    return JourneyConfig(
        default_speed=args.default_speed,
        arrival_radius=args.arrival_radius,
        min_sample_interval=args.min_sample_interval,
        projection_method=ProjectionMethod(args.projection),
    )


def format_route_summary(route: Route) -> str:
    """Describe a composed route, one line per leg."""
    lines = [
        f"Route: {route.total_length / 1000:.2f} km, about "
        f"{format_remaining_time(route.expected_duration)} walking, {len(route.segments)} leg(s)"
    ]
    for i, segment in enumerate(route.segments):
        lines.append(
            f"  Leg {i + 1}: {route.waypoint_distances[i] / 1000:6.2f}-"
            f"{route.waypoint_distances[i + 1] / 1000:6.2f} km ({segment.length / 1000:.2f} km)"
        )
    return "\n".join(lines)


def format_progress(sample: PositionSample, snapshot: JourneySnapshot) -> str:
    """Describe the session state after one replayed sample."""
    return (
        f"{sample.timestamp:%H:%M:%S} {snapshot.traveled_fraction * 100:5.1f}% "
        f"{snapshot.traveled_distance / 1000:6.2f} km  leg {snapshot.current_leg + 1}  "
        f"{format_speed(snapshot.current_speed)} (avg {format_speed(snapshot.smoothed_speed)})  "
        f"ETA {format_arrival_time(snapshot.estimated_arrival)} "
        f"({format_remaining_time(snapshot.remaining_time)} left)"
    )


async def run_journey(
    args: argparse.Namespace,
    waypoints: List[GeoPoint],
    samples: List[PositionSample],
) -> int:
    """
    Compose the route and replay samples through a journey session.

    Returns:
        Process exit code
    """
    service = OSRMRoutingService(
        base_url=args.osrm_url,
        profile=args.profile,
        timeout=args.timeout,
        max_retries=args.max_retries,
    )
    # Replayed journeys start at the first recorded fix, not at wall-clock time
    clock = (lambda: samples[0].timestamp) if samples else None
    session = JourneySession.with_service(service, build_config(args), clock=clock)

    session.set_waypoints(waypoints)
    try:
        route = await session.wait_until_composed()
    except JourneyError as e:
        logger.error(f"{e}")
        return 1

    print(format_route_summary(route))

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(route_to_gpx(route))
        logger.info(f"Wrote route to {args.output}")

    if samples:
        session.start()
        for sample in samples:
            snapshot = session.update_position(sample)
            print(format_progress(sample, snapshot))
            if snapshot.state == JourneyState.COMPLETED:
                print(f"Arrived at {sample.timestamp:%H:%M:%S}")
                break
        else:
            logger.info("Track ended before reaching the destination")

    log_metrics(session.metrics(), args.metrics)
    return 0


def main(argv: Optional[List[str]] = None):
    """
    Parses command-line arguments, reads the GPX inputs,
    composes the route and replays the track.
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.filename:
        parser.print_help()
        sys.exit(1)

    setup_logging(args)

    try:
        with open(args.filename, "r", encoding="utf-8") as f:
            waypoints = read_waypoints(f)
        samples: List[PositionSample] = []
        if args.track:
            with open(args.track, "r", encoding="utf-8") as f:
                samples = read_track_samples(f)
    except FileNotFoundError as e:
        logger.error(f"GPX file not found: {e.filename}")
        sys.exit(1)
    except PermissionError as e:
        logger.error(f"Cannot read GPX file (permission denied): {e.filename}")
        sys.exit(1)
    except gpx.GPXException as e:
        logger.error(f"Invalid GPX file: {e}")
        sys.exit(1)

    if len(waypoints) < 2:
        logger.error(f"Need at least two waypoints, found {len(waypoints)} in {args.filename}")
        sys.exit(1)
    logger.info(f"Loaded {len(waypoints)} waypoints")

    try:
        exit_code = asyncio.run(run_journey(args, waypoints, samples))
    except ValueError as e:
        logger.error(f"Invalid coordinates: {e}")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
