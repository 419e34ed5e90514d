"""
Geographic primitives for journey tracking.

This module provides the coordinate value type, boundary validation,
great-circle distance helpers, and the projection helpers used when a
route has to be handled in a local planar coordinate system.
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple
import math
from shapely.geometry import LineString
import pyproj

# Mean Earth radius in meters
EARTH_RADIUS_M = 6371000.0


class GeoPoint(NamedTuple):
    """Represents a geographic position with latitude and longitude."""

    latitude: float
    longitude: float


def validate_point(point: GeoPoint) -> GeoPoint:
    """
    Check that a point holds finite, in-range WGS84 coordinates.

    Args:
        point: Point to check

    Returns:
        The same point, for call chaining

    Raises:
        ValueError: If latitude or longitude is NaN, infinite or out of range
    """
    latitude, longitude = point
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValueError(f"Coordinates must be finite, got {point}")
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"Latitude {latitude} is outside [-90, 90]")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"Longitude {longitude} is outside [-180, 180]")
    return point


def haversine_distance(point1: GeoPoint, point2: GeoPoint) -> float:
    """
    Calculate the great-circle distance between two points.

    Args:
        point1: First point
        point2: Second point

    Returns:
        Distance in meters
    """
    lat1, lon1 = math.radians(point1.latitude), math.radians(point1.longitude)
    lat2, lon2 = math.radians(point2.latitude), math.radians(point2.longitude)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    # Rounding can push a slightly above 1 for antipodal points
    a = min(1.0, a)

    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def calculate_cumulative_distances(points: Sequence[GeoPoint]) -> List[float]:
    """
    Calculate cumulative great-circle distances along a polyline.

    Args:
        points: Ordered points of the polyline

    Returns:
        List of cumulative distances in meters, with the same length as points
    """
    if not points:
        return []

    cumulative_distances = [0.0]
    for i in range(1, len(points)):
        segment_distance = haversine_distance(points[i - 1], points[i])
        cumulative_distances.append(cumulative_distances[-1] + segment_distance)

    return cumulative_distances


def calculate_bbox(points: Iterable[GeoPoint]) -> Tuple[float, float, float, float]:
    """
    Calculate the unbuffered bounding box of some points.

    Returns:
        Tuple of (south, west, north, east) in decimal degrees

    Raises:
        ValueError: If points is empty
    """
    points = list(points)
    if not points:
        raise ValueError("Cannot calculate bounding box for no points")

    latitudes = [point.latitude for point in points]
    longitudes = [point.longitude for point in points]

    return (min(latitudes), min(longitudes), max(latitudes), max(longitudes))


def create_transverse_mercator_projection(
    bbox: Tuple[float, float, float, float],
) -> pyproj.Proj:
    """
    Create a custom transverse mercator projection centered on the given bounding box.

    Args:
        bbox: Tuple of (south, west, north, east) in decimal degrees

    Returns:
        pyproj.Proj object for the custom projection
    """
    south, west, north, east = bbox

    center_lat = (south + north) / 2.0
    center_lon = (west + east) / 2.0

    proj_string = f"+proj=tmerc +lat_0={center_lat} +lon_0={center_lon} +k=1 +x_0=0 +y_0=0 +datum=WGS84 +units=m +no_defs"
    return pyproj.Proj(proj_string)


def coords_to_polyline(
    points: Sequence[GeoPoint], projection: Optional[pyproj.Proj] = None
) -> LineString:
    """
    Convert a list of points to a Shapely LineString.

    Args:
        points: Ordered points of the polyline
        projection: Optional pyproj.Proj object for coordinate transformation.
                   If None, uses (longitude, latitude) coordinates directly.

    Returns:
        LineString object in projected coordinates if projection is provided,
        otherwise in geographic coordinates

    Raises:
        ValueError: If points has less than 2 entries
    """
    if not points or len(points) < 2:
        raise ValueError("At least two positions are required to create a LineString.")

    lons = [point.longitude for point in points]
    lats = [point.latitude for point in points]

    if projection is not None:
        x_coords, y_coords = projection(lons, lats)
        return LineString(list(zip(x_coords, y_coords)))

    return LineString(list(zip(lons, lats)))
