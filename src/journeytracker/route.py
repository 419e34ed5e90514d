#!/usr/bin/env python3
"""
Route data model for journey tracking.
"""

from bisect import bisect_right
from typing import List, Optional, Sequence, Tuple
import logging
import math
import pyproj
from shapely.geometry import LineString

from .errors import InsufficientWaypointsError
from .geometry import (
    GeoPoint,
    calculate_bbox,
    calculate_cumulative_distances,
    coords_to_polyline,
    create_transverse_mercator_projection,
)
from .routing import RouteSegment

logger = logging.getLogger(__name__)


class Route:
    """Concatenation of the routed legs for a waypoint list."""

    def __init__(self, waypoints: Sequence[GeoPoint], segments: Sequence[RouteSegment]):
        """Initializes a Route object.

        Args:
            waypoints: The waypoints the route was composed for, in traversal order.
            segments: One RouteSegment per consecutive waypoint pair, in leg order.

        Raises:
            InsufficientWaypointsError: If there are fewer than two waypoints.
            ValueError: If the segments do not match the waypoints leg by leg.
        """
        if len(waypoints) < 2:
            raise InsufficientWaypointsError(len(waypoints))
        if len(segments) != len(waypoints) - 1:
            raise ValueError(
                f"Expected {len(waypoints) - 1} segments for {len(waypoints)} waypoints, "
                f"got {len(segments)}"
            )
        for i, segment in enumerate(segments):
            if segment.leg_index != i:
                raise ValueError(
                    f"Segment at position {i} belongs to leg {segment.leg_index}"
                )

        self.waypoints: Tuple[GeoPoint, ...] = tuple(waypoints)
        self.segments: Tuple[RouteSegment, ...] = tuple(segments)
        self.total_length = sum(segment.length for segment in self.segments)
        self.expected_duration = sum(segment.duration for segment in self.segments)

        # Route distance at each waypoint: prefix sums of leg lengths
        self.waypoint_distances: List[float] = [0.0]
        for segment in self.segments:
            self.waypoint_distances.append(self.waypoint_distances[-1] + segment.length)

        self.polyline, self.vertex_distances = self._concatenate_segments()

        self.projection: Optional[pyproj.Proj] = None
        self._linestring: Optional[LineString] = None
        self._cumulative_planar_distances: List[float] = []

        logger.debug(
            f"Route with {len(self.segments)} legs, {len(self.polyline)} points, "
            f"{self.total_length:.0f} m"
        )

    def _concatenate_segments(self) -> Tuple[List[GeoPoint], List[float]]:
        """
        Join the leg polylines and compute the route distance of every vertex.

        Inside a leg, the great-circle distance walked along its polyline is
        rescaled to the leg's reported length and offset by the leg's
        waypoint marker, so vertex distances never decrease and each leg
        ends exactly at the next marker.
        """
        polyline: List[GeoPoint] = []
        vertex_distances: List[float] = []

        for segment, marker in zip(self.segments, self.waypoint_distances):
            local_distances = calculate_cumulative_distances(segment.polyline)
            polyline_length = local_distances[-1] if local_distances else 0.0
            scale = segment.length / polyline_length if polyline_length > 0 else 0.0

            for point, local_distance in zip(segment.polyline, local_distances):
                polyline.append(point)
                vertex_distances.append(marker + local_distance * scale)

        return polyline, vertex_distances

    @property
    def origin(self) -> GeoPoint:
        return self.waypoints[0]

    @property
    def destination(self) -> GeoPoint:
        return self.waypoints[-1]

    def leg_at_distance(self, distance: float) -> int:
        """
        Index of the leg containing the given route distance.

        Distances exactly on a waypoint belong to the leg starting there; the
        destination belongs to the last leg.
        """
        index = bisect_right(self.waypoint_distances, distance) - 1
        return max(0, min(index, len(self.segments) - 1))

    @property
    def linestring(self) -> LineString:
        """
        The polyline in a transverse mercator projection centered on the route.

        Raises:
            ValueError: If the polyline has fewer than two points
        """
        if self._linestring is None:
            self.projection = create_transverse_mercator_projection(
                calculate_bbox(self.polyline)
            )
            self._linestring = coords_to_polyline(self.polyline, self.projection)
            self._precompute_planar_distances()
        return self._linestring

    def _precompute_planar_distances(self) -> None:
        """Precompute cumulative Euclidean distances along the projected polyline."""
        coords = list(self._linestring.coords)
        distances = [0.0]
        for i in range(1, len(coords)):
            (x1, y1), (x2, y2) = coords[i - 1], coords[i]
            distances.append(distances[-1] + math.sqrt((x2 - x1) ** 2 + (y2 - y1) ** 2))
        self._cumulative_planar_distances = distances

    def planar_to_route_distance(self, planar_distance: float) -> float:
        """
        Convert a distance along the projected linestring to a route distance.

        Uses the precomputed cumulative planar distances with binary search and
        interpolates linearly between the route distances of the enclosing
        vertices.

        Args:
            planar_distance: Distance in meters along the projected linestring

        Returns:
            Corresponding route distance in meters
        """
        linestring_length = self.linestring.length
        distances = self._cumulative_planar_distances

        if planar_distance <= 0:
            return self.vertex_distances[0]
        if planar_distance >= linestring_length:
            return self.vertex_distances[-1]

        index = bisect_right(distances, planar_distance) - 1
        if index >= len(distances) - 1:
            return self.vertex_distances[-1]

        span = distances[index + 1] - distances[index]
        if span <= 0:
            return self.vertex_distances[index]

        t = (planar_distance - distances[index]) / span
        start = self.vertex_distances[index]
        end = self.vertex_distances[index + 1]
        return start + t * (end - start)

    def project_point(self, point: GeoPoint) -> Tuple[float, float]:
        """
        Project a point into the route's planar coordinate system.

        Returns:
            (x, y) in meters
        """
        _ = self.linestring  # ensures the projection exists
        return self.projection(point.longitude, point.latitude)

    def __len__(self) -> int:
        """Return number of polyline points in route."""
        return len(self.polyline)

    def __getitem__(self, index):
        """Allow indexing into polyline points."""
        return self.polyline[index]

    def __iter__(self):
        """Allow iteration over polyline points."""
        return iter(self.polyline)
