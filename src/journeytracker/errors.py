"""Exceptions raised by the journey tracking engine."""

from typing import List, NamedTuple

from .geometry import GeoPoint


class JourneyError(Exception):
    """Base class for journey tracking errors."""


class InsufficientWaypointsError(JourneyError):
    """Raised when a route is requested for fewer than two waypoints."""

    def __init__(self, count: int):
        super().__init__(f"At least two waypoints are required, got {count}")
        self.count = count


class RoutingError(JourneyError):
    """Raised by a routing service when a single leg cannot be routed."""

    kind = "routing error"


class RoutingServiceError(RoutingError):
    """The routing service failed (network, HTTP or service-side error)."""

    kind = "service error"


class NoRouteFoundError(RoutingError):
    """The routing service answered but found no route between the points."""

    kind = "no route found"


class LegFailure(NamedTuple):
    """A leg that could not be routed during composition."""

    index: int
    origin: GeoPoint
    destination: GeoPoint
    cause: RoutingError

    def describe(self) -> str:
        return (
            f"leg {self.index} ({self.origin.latitude:.5f},{self.origin.longitude:.5f} -> "
            f"{self.destination.latitude:.5f},{self.destination.longitude:.5f}): "
            f"{self.cause.kind}: {self.cause}"
        )


class RoutingServiceFailure(JourneyError):
    """
    Raised by the route composer when one or more legs failed.

    All failed legs are reported together, ordered by leg index.
    """

    def __init__(self, failures: List[LegFailure]):
        self.failures = sorted(failures, key=lambda failure: failure.index)
        details = "; ".join(failure.describe() for failure in self.failures)
        super().__init__(f"Could not calculate route segment: {details}")

    @property
    def failed_legs(self) -> List[int]:
        return [failure.index for failure in self.failures]


class NoRouteAvailableError(JourneyError):
    """Raised when progress or ETA is requested before a route exists."""


class JourneyStateError(JourneyError):
    """Raised when an operation is not allowed in the session's current state."""


class CompositionError(JourneyError):
    """Raised when route composition failed for a reason other than a routed leg."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Route composition failed: {type(cause).__name__}: {cause}")
        self.cause = cause
