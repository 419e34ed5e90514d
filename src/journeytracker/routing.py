"""
Routing service interface and the OSRM HTTP adapter.

The journey engine only consumes routed legs; computing them is the job of
an external routing service. Any object with a compatible ``route``
coroutine can be plugged into the route composer.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple
import asyncio
import logging
import time
import requests

from .config import TravelMode
from .errors import NoRouteFoundError, RoutingServiceError
from .geometry import GeoPoint

DEFAULT_API_TIMEOUT = 30
DEFAULT_OSRM_URL = "https://router.project-osrm.org"
DEFAULT_OSRM_PROFILE = "foot"

# OSRM response codes meaning the service worked but no path exists
NO_ROUTE_CODES = ("NoRoute", "NoSegment")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteSegment:
    """The routed path between two consecutive waypoints."""

    polyline: Tuple[GeoPoint, ...]
    length: float  # meters
    duration: float  # seconds
    leg_index: int = 0

    def __post_init__(self):
        object.__setattr__(self, "polyline", tuple(self.polyline))
        if self.length < 0:
            raise ValueError(f"Segment length cannot be negative, got {self.length}")


class RoutingService:
    """Interface of an external routing service."""

    async def route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: TravelMode = TravelMode.WALKING,
        leg_index: int = 0,
    ) -> RouteSegment:
        """
        Route one leg.

        Returns:
            RouteSegment tagged with leg_index

        Raises:
            RoutingServiceError: If the service failed
            NoRouteFoundError: If no route exists between the points
        """
        raise NotImplementedError


def _is_retryable_status(status_code: int) -> bool:
    """Check if an HTTP status is worth retrying."""
    return status_code == 429 or status_code >= 500


def _format_coordinates(origin: GeoPoint, destination: GeoPoint) -> str:
    """Format points as OSRM expects them: 'lon,lat;lon,lat'."""
    return ";".join(
        f"{point.longitude},{point.latitude}" for point in (origin, destination)
    )


def parse_route_response(data: Dict[str, Any], leg_index: int = 0) -> RouteSegment:
    """
    Convert an OSRM /route response into a RouteSegment.

    Args:
        data: Decoded JSON body
        leg_index: Index of the leg the request was made for

    Raises:
        NoRouteFoundError: If OSRM reports that no route exists
        RoutingServiceError: If OSRM reports an error or the body is malformed
    """
    if not isinstance(data, dict):
        raise RoutingServiceError("Malformed OSRM response: expected a JSON object")

    code = data.get("code")
    if code in NO_ROUTE_CODES:
        raise NoRouteFoundError(data.get("message", code))
    if code != "Ok":
        raise RoutingServiceError(
            f"OSRM error {code}: {data.get('message', 'Unknown error')}"
        )

    routes = data.get("routes") or []
    if not routes:
        raise NoRouteFoundError("OSRM returned no routes")

    route = routes[0]
    try:
        polyline = [
            GeoPoint(latitude=float(lat), longitude=float(lon))
            for lon, lat in route["geometry"]["coordinates"]
        ]
        length = float(route["distance"])
        duration = float(route["duration"])
        return RouteSegment(
            polyline=polyline, length=length, duration=duration, leg_index=leg_index
        )
    except (KeyError, TypeError, ValueError) as e:
        raise RoutingServiceError(f"Malformed OSRM route: {e}") from e


class OSRMRoutingService(RoutingService):
    """Routes legs through an OSRM-compatible HTTP server."""

    def __init__(
        self,
        base_url: str = DEFAULT_OSRM_URL,
        profile: str = DEFAULT_OSRM_PROFILE,
        timeout: float = DEFAULT_API_TIMEOUT,
        max_retries: int = 0,
        base_delay: float = 2.0,
    ):
        if not base_url:
            raise ValueError("OSRM base URL must not be empty")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: TravelMode = TravelMode.WALKING,
        leg_index: int = 0,
    ) -> RouteSegment:
        # requests is blocking; run it in a worker thread so legs overlap
        return await asyncio.to_thread(
            self.fetch_segment, origin, destination, mode, leg_index
        )

    def fetch_segment(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: TravelMode = TravelMode.WALKING,
        leg_index: int = 0,
    ) -> RouteSegment:
        """Blocking version of route()."""
        url = f"{self.base_url}/route/v1/{self.profile}/{_format_coordinates(origin, destination)}"
        logger.debug(f"Requesting {mode} leg {leg_index} from OSRM: {url}")

        data = self._get_json(
            url,
            params={
                "overview": "full",
                "geometries": "geojson",
                "alternatives": "false",
                "steps": "false",
            },
        )
        segment = parse_route_response(data, leg_index)

        logger.debug(
            f"Leg {leg_index}: {segment.length:.0f} m, {segment.duration:.0f} s, "
            f"{len(segment.polyline)} points"
        )
        return segment

    def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        """
        GET a URL and decode its JSON body.

        Retries up to max_retries times with exponential backoff on 429 and 5xx.

        Raises:
            RoutingServiceError: On network errors, exhausted retries or non-JSON bodies
        """
        attempt = 0

        while True:
            try:
                response = requests.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise RoutingServiceError(f"Request to {self.base_url} failed: {e}") from e

            status_code = response.status_code
            if _is_retryable_status(status_code):
                if attempt < self.max_retries:
                    delay = self.base_delay * (2**attempt)
                    error_type = "Server error" if status_code >= 500 else "Rate limited"
                    logger.warning(
                        f"{error_type} ({status_code}), retrying in {delay:.0f}s (attempt {attempt + 1} of {self.max_retries + 1})"
                    )
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise RoutingServiceError(
                    f"OSRM returned HTTP {status_code} after {attempt + 1} attempt(s)"
                )

            try:
                return response.json()
            except ValueError as e:
                raise RoutingServiceError(
                    f"OSRM returned HTTP {status_code} with a non-JSON body"
                ) from e
