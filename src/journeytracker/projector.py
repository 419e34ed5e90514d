"""
Projection of a live position onto a composed route.
"""

from typing import NamedTuple
import logging
from shapely.geometry import Point

from .config import ProjectionMethod
from .geometry import GeoPoint, haversine_distance
from .route import Route

logger = logging.getLogger(__name__)

DEFAULT_ARRIVAL_RADIUS = 50.0  # meters


class Projection(NamedTuple):
    """Where a position lies along a route."""

    fraction: float  # traveled distance / total length, in [0, 1]
    distance_traveled: float  # meters along the route
    distance_from_route: float  # meters from the position to the matched route point
    index: int  # matched polyline vertex, or start vertex of the matched edge
    arrived: bool  # position is within the arrival radius of the destination


def _nearest_vertex(route: Route, position: GeoPoint):
    """Return (vertex index, distance to it) for the closest polyline vertex."""
    closest_index = 0
    closest_distance = float("inf")

    for i, vertex in enumerate(route.polyline):
        distance = haversine_distance(position, vertex)
        if distance < closest_distance:
            closest_distance = distance
            closest_index = i

    return closest_index, closest_distance


def _nearest_point_on_segments(route: Route, position: GeoPoint):
    """Return (route distance, distance to route, edge index) via planar projection."""
    x, y = route.project_point(position)
    point = Point(x, y)

    planar_distance = route.linestring.project(point)
    route_distance = route.planar_to_route_distance(planar_distance)

    # Edge index is only informational; vertex distances are non-decreasing
    index = 0
    for i, vertex_distance in enumerate(route.vertex_distances):
        if vertex_distance <= route_distance:
            index = i
        else:
            break

    return route_distance, route.linestring.distance(point), index


def project(
    route: Route,
    position: GeoPoint,
    arrival_radius: float = DEFAULT_ARRIVAL_RADIUS,
    method: ProjectionMethod = ProjectionMethod.VERTEX,
) -> Projection:
    """
    Find how far along a route a position is.

    The vertex method picks the polyline vertex closest to the position, so
    it is only as precise as the polyline's vertex density. The segment
    method projects onto the polyline edges in a local planar projection.

    Args:
        route: The composed route
        position: Current position
        arrival_radius: Positions closer than this to the destination (meters)
                        count as arrived and report a fraction of 1.0
        method: Vertex or segment projection

    Returns:
        Projection of the position onto the route
    """
    arrived = haversine_distance(position, route.destination) < arrival_radius

    if not route.polyline:
        # No geometry to match against; only the arrival check applies
        distance_traveled, distance_from_route, index = (
            0.0,
            haversine_distance(position, route.origin),
            0,
        )
    elif method == ProjectionMethod.SEGMENT and len(route.polyline) >= 2:
        distance_traveled, distance_from_route, index = _nearest_point_on_segments(
            route, position
        )
    else:
        index, distance_from_route = _nearest_vertex(route, position)
        distance_traveled = route.vertex_distances[index]

    if route.total_length <= 0:
        # Start and destination coincide; there is no progress to measure
        return Projection(0.0, 0.0, distance_from_route, index, arrived)

    if arrived:
        fraction = 1.0
        distance_traveled = route.total_length
    else:
        fraction = min(1.0, max(0.0, distance_traveled / route.total_length))
        distance_traveled = fraction * route.total_length

    logger.debug(
        f"Projected position onto vertex {index}: {distance_traveled:.1f} m "
        f"({fraction * 100:.1f}%), {distance_from_route:.1f} m off route"
    )

    return Projection(fraction, distance_traveled, distance_from_route, index, arrived)
