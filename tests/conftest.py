import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union

import pytest

from journeytracker.config import TravelMode
from journeytracker.geometry import EARTH_RADIUS_M, GeoPoint, calculate_cumulative_distances
from journeytracker.routing import RouteSegment, RoutingService

# Meters per degree of longitude on the equator
METERS_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_M / 360.0

START_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def east_of(point: GeoPoint, meters: float) -> GeoPoint:
    """Point the given distance east of point (exact on the equator)."""
    scale = METERS_PER_DEGREE * math.cos(math.radians(point.latitude))
    return GeoPoint(point.latitude, point.longitude + meters / scale)


def north_of(point: GeoPoint, meters: float) -> GeoPoint:
    return GeoPoint(point.latitude + meters / METERS_PER_DEGREE, point.longitude)


def straight_segment(
    origin: GeoPoint,
    destination: GeoPoint,
    leg_index: int = 0,
    steps: int = 10,
    speed: float = 1.4,
) -> RouteSegment:
    """Leg running in a straight line with steps + 1 evenly spaced vertices."""
    points = [
        GeoPoint(
            origin.latitude + (destination.latitude - origin.latitude) * i / steps,
            origin.longitude + (destination.longitude - origin.longitude) * i / steps,
        )
        for i in range(steps + 1)
    ]
    length = calculate_cumulative_distances(points)[-1]
    return RouteSegment(
        polyline=points, length=length, duration=length / speed, leg_index=leg_index
    )


Key = Union[int, GeoPoint]


class FakeRoutingService(RoutingService):
    """
    In-memory routing service returning straight legs.

    Delays and failures are keyed by leg index or by leg destination.
    """

    def __init__(
        self,
        delays: Optional[Dict[Key, float]] = None,
        failures: Optional[Dict[Key, Exception]] = None,
    ):
        self.delays = delays or {}
        self.failures = failures or {}
        self.calls: List[Tuple[int, GeoPoint, GeoPoint]] = []
        self.completed: List[int] = []

    def _lookup(self, table, leg_index, destination, default=None):
        if leg_index in table:
            return table[leg_index]
        return table.get(destination, default)

    async def route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: TravelMode = TravelMode.WALKING,
        leg_index: int = 0,
    ) -> RouteSegment:
        self.calls.append((leg_index, origin, destination))
        await asyncio.sleep(self._lookup(self.delays, leg_index, destination, 0.0))
        self.completed.append(leg_index)

        failure = self._lookup(self.failures, leg_index, destination)
        if failure is not None:
            raise failure
        return straight_segment(origin, destination, leg_index)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def origin() -> GeoPoint:
    return GeoPoint(0.0, 0.0)


@pytest.fixture
def destination(origin) -> GeoPoint:
    # About 1112 m east of origin
    return GeoPoint(0.0, 0.01)


@pytest.fixture
def service() -> FakeRoutingService:
    return FakeRoutingService()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
