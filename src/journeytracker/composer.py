"""
Composition of a multi-waypoint route from concurrently routed legs.
"""

from typing import List, NamedTuple, Optional, Sequence
import asyncio
import logging

from .config import TravelMode
from .errors import (
    InsufficientWaypointsError,
    LegFailure,
    RoutingError,
    RoutingServiceFailure,
)
from .geometry import GeoPoint
from .route import Route
from .routing import RouteSegment, RoutingService

logger = logging.getLogger(__name__)


class LegResult(NamedTuple):
    """Outcome of one leg request, tagged with its origin waypoint index."""

    index: int
    segment: Optional[RouteSegment]
    failure: Optional[LegFailure]


class RouteComposer:
    """Builds a Route by routing every consecutive waypoint pair in parallel."""

    def __init__(
        self,
        service: RoutingService,
        travel_mode: TravelMode = TravelMode.WALKING,
    ):
        self.service = service
        self.travel_mode = travel_mode

    async def _route_leg(
        self, index: int, origin: GeoPoint, destination: GeoPoint
    ) -> LegResult:
        try:
            segment = await self.service.route(
                origin, destination, self.travel_mode, leg_index=index
            )
        except RoutingError as e:
            logger.warning(f"Leg {index} failed: {e.kind}: {e}")
            return LegResult(index, None, LegFailure(index, origin, destination, e))

        if segment.leg_index != index:
            # Adapters that ignore leg_index still get their segment placed by request
            segment = RouteSegment(
                polyline=segment.polyline,
                length=segment.length,
                duration=segment.duration,
                leg_index=index,
            )
        return LegResult(index, segment, None)

    async def compose(self, waypoints: Sequence[GeoPoint]) -> Route:
        """
        Route all legs of a waypoint list and assemble them into one Route.

        Every leg is requested concurrently. Composition waits for all of
        them, even when some fail, then orders the legs by waypoint index.

        Args:
            waypoints: Ordered waypoints, origin first and destination last

        Returns:
            The composed Route

        Raises:
            InsufficientWaypointsError: If fewer than two waypoints are given
            RoutingServiceFailure: If any leg could not be routed
        """
        waypoints = list(waypoints)
        if len(waypoints) < 2:
            raise InsufficientWaypointsError(len(waypoints))

        leg_count = len(waypoints) - 1
        logger.debug(f"Composing route with {leg_count} legs")

        tasks = [
            asyncio.ensure_future(self._route_leg(i, waypoints[i], waypoints[i + 1]))
            for i in range(leg_count)
        ]

        results: List[LegResult] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                logger.debug(f"Leg {result.index} resolved")
                results.append(result)
        except BaseException:
            # Unexpected adapter bug or cancellation: don't leave legs running
            for task in tasks:
                task.cancel()
            raise

        # Arrival order is arbitrary; assemble strictly by waypoint index
        results.sort(key=lambda result: result.index)

        failures = [result.failure for result in results if result.failure is not None]
        if failures:
            raise RoutingServiceFailure(failures)

        route = Route(waypoints, [result.segment for result in results])
        logger.info(
            f"Composed route over {len(waypoints)} waypoints: "
            f"{route.total_length / 1000:.2f} km"
        )
        return route
