#!/usr/bin/env python3
"""
GPX reading and writing for waypoints, recorded tracks and composed routes.
"""

from datetime import timezone
from typing import List, TextIO
import logging
import gpxpy
import gpxpy.gpx

from .geometry import GeoPoint
from .route import Route
from .session import PositionSample

logger = logging.getLogger(__name__)


def read_waypoints(file_input: TextIO) -> List[GeoPoint]:
    """
    Read journey waypoints from GPX data.

    GPX ``<wpt>`` elements are used in document order. If there are none,
    the points of all ``<rte>`` elements are used instead.

    Args:
        file_input: File-like object containing GPX data

    Returns:
        List of waypoints, possibly empty

    Raises:
        gpxpy.gpx.GPXException: If GPX data is malformed
    """
    gpx_data = gpxpy.parse(file_input)

    waypoints = [
        GeoPoint(latitude=point.latitude, longitude=point.longitude)
        for point in gpx_data.waypoints
    ]
    if waypoints:
        logger.debug(f"Read {len(waypoints)} waypoints from <wpt> elements")
        return waypoints

    for gpx_route in gpx_data.routes:
        for point in gpx_route.points:
            waypoints.append(GeoPoint(latitude=point.latitude, longitude=point.longitude))

    logger.debug(f"Read {len(waypoints)} waypoints from <rte> points")
    return waypoints


def read_track_samples(file_input: TextIO) -> List[PositionSample]:
    """
    Read a recorded GPX track as position samples for replay.

    All tracks and segments are concatenated. Points without a timestamp
    are skipped; naive timestamps are taken as UTC.

    Args:
        file_input: File-like object containing GPX data

    Returns:
        List of PositionSample in track order

    Raises:
        gpxpy.gpx.GPXException: If GPX data is malformed
    """
    gpx_data = gpxpy.parse(file_input)

    samples = []
    skipped = 0
    for track in gpx_data.tracks:
        for segment in track.segments:
            for point in segment.points:
                if point.time is None:
                    skipped += 1
                    continue
                timestamp = point.time
                if timestamp.tzinfo is None:
                    timestamp = timestamp.replace(tzinfo=timezone.utc)
                samples.append(
                    PositionSample(
                        coordinate=GeoPoint(point.latitude, point.longitude),
                        timestamp=timestamp,
                    )
                )

    if skipped:
        logger.warning(f"Skipped {skipped} track points without a timestamp")
    logger.debug(f"Read {len(samples)} timestamped track points")
    return samples


def route_to_gpx(route: Route, name: str = "Journey") -> str:
    """
    Serialize a composed route as GPX.

    The route becomes one track with a segment per leg; the waypoints are
    written as ``<wpt>`` elements so the file can be read back with
    read_waypoints().

    Returns:
        GPX document as a string
    """
    gpx_data = gpxpy.gpx.GPX()

    for i, waypoint in enumerate(route.waypoints):
        gpx_data.waypoints.append(
            gpxpy.gpx.GPXWaypoint(
                latitude=waypoint.latitude,
                longitude=waypoint.longitude,
                name=f"Waypoint {i + 1}",
            )
        )

    track = gpxpy.gpx.GPXTrack(name=name)
    gpx_data.tracks.append(track)
    for segment in route.segments:
        track_segment = gpxpy.gpx.GPXTrackSegment()
        for point in segment.polyline:
            track_segment.points.append(
                gpxpy.gpx.GPXTrackPoint(latitude=point.latitude, longitude=point.longitude)
            )
        track.segments.append(track_segment)

    return gpx_data.to_xml()
