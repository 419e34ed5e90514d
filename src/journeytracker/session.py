#!/usr/bin/env python3
"""
Journey session: the state machine tying route composition, progress
projection, speed estimation and ETA together for one journey.

All state lives in a single session object and is only mutated from the
event loop the session is used on. Route compositions run as tasks on that
loop; when one finishes, its result is applied only if it still matches the
session's current waypoints (stale-result guard), so no locks are needed.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterable, Callable, List, NamedTuple, Optional, Set, Sequence, Tuple
import asyncio
import logging

from .composer import RouteComposer
from .config import JourneyConfig
from .errors import (
    CompositionError,
    JourneyError,
    JourneyStateError,
    NoRouteAvailableError,
    RoutingServiceFailure,
)
from .eta import EtaEstimate, estimate
from .geometry import GeoPoint, validate_point
from .metrics import JourneyMetrics
from .projector import Projection, project
from .route import Route
from .routing import RoutingService
from .speed import SpeedEstimator

logger = logging.getLogger(__name__)


class JourneyState(Enum):
    """Lifecycle states of a journey session."""

    IDLE = "idle"
    COMPOSING = "composing"
    READY = "ready"
    TRACKING = "tracking"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


class PositionSample(NamedTuple):
    """A fix delivered by the location provider."""

    coordinate: GeoPoint
    timestamp: datetime
    accuracy: Optional[float] = None  # horizontal accuracy in meters


@dataclass(frozen=True)
class JourneySnapshot:
    """Read-only view of a session's state."""

    state: JourneyState
    waypoints: Tuple[GeoPoint, ...]
    route: Optional[Route]
    traveled_fraction: float
    traveled_distance: float
    current_leg: int
    current_speed: float
    smoothed_speed: float
    remaining_time: Optional[float]
    estimated_arrival: Optional[datetime]
    start_timestamp: Optional[datetime]
    last_error: Optional[JourneyError]

    @property
    def remaining_distance(self) -> float:
        if self.route is None:
            return 0.0
        return max(0.0, self.route.total_length - self.traveled_distance)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JourneySession:
    """
    Tracks one journey from waypoint editing to arrival.

    Waypoint edits that leave two or more waypoints schedule a composition on
    the running event loop, so they must be made from a coroutine. Outside a
    loop they raise RuntimeError and leave the session unchanged.
    """

    def __init__(
        self,
        composer: RouteComposer,
        config: Optional[JourneyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initializes a JourneySession.

        Args:
            composer: Composer used to build routes from waypoints.
            config: Session configuration; defaults to JourneyConfig().
            clock: Returns the current time; defaults to UTC wall clock.
        """
        self.composer = composer
        self.config = config or JourneyConfig()
        self._clock = clock or _utcnow
        self.speed = SpeedEstimator(
            default_speed=self.config.default_speed,
            min_speed=self.config.min_speed,
            max_speed=self.config.max_speed,
            history_size=self.config.speed_history_size,
        )

        self.state = JourneyState.IDLE
        self.route: Optional[Route] = None
        self.last_error: Optional[JourneyError] = None
        self.start_timestamp: Optional[datetime] = None
        self._waypoints: List[GeoPoint] = []
        self._tracking = False
        self._generation = 0
        self._composition: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._last_speed_sample: Optional[PositionSample] = None
        self._last_position: Optional[PositionSample] = None

        self._clear_progress()
        self._reset_counters()

    @classmethod
    def with_service(
        cls,
        service: RoutingService,
        config: Optional[JourneyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "JourneySession":
        """Create a session composing routes through the given routing service."""
        config = config or JourneyConfig()
        return cls(RouteComposer(service, config.travel_mode), config, clock)

    def _clear_progress(self) -> None:
        self.traveled_fraction = 0.0
        self.traveled_distance = 0.0
        self.current_leg = 0
        self.remaining_time = None
        self.estimated_arrival = None

    def _reset_counters(self) -> None:
        self._position_updates = 0
        self._compositions_started = 0
        self._compositions_applied = 0
        self._compositions_failed = 0
        self._compositions_discarded = 0

    @property
    def waypoints(self) -> Tuple[GeoPoint, ...]:
        return tuple(self._waypoints)

    # Waypoint editing

    def _ensure_editable(self) -> None:
        if self.state == JourneyState.COMPLETED:
            raise JourneyStateError(
                "Journey is completed; reset the session to plan a new one"
            )

    def _ensure_loop(self, waypoint_count: int) -> None:
        # Composition needs a running loop; check before touching any state
        if waypoint_count >= 2:
            asyncio.get_running_loop()

    def add_waypoint(self, point: GeoPoint) -> Optional[asyncio.Task]:
        """Append a waypoint; recomposes the route once there are two or more."""
        point = validate_point(GeoPoint(*point))
        self._ensure_editable()
        self._ensure_loop(len(self._waypoints) + 1)
        self._waypoints.append(point)
        return self._waypoints_changed()

    def remove_waypoint(self, index: int) -> Optional[asyncio.Task]:
        """Remove the waypoint at index; out-of-range indexes are ignored."""
        self._ensure_editable()
        if not 0 <= index < len(self._waypoints):
            logger.debug(
                f"Ignoring removal of waypoint {index}, only {len(self._waypoints)} present"
            )
            return None
        self._ensure_loop(len(self._waypoints) - 1)
        del self._waypoints[index]
        return self._waypoints_changed()

    def clear_waypoints(self) -> None:
        """Remove all waypoints and the route."""
        self._ensure_editable()
        self._waypoints.clear()
        self._waypoints_changed()

    def set_waypoints(self, points: Sequence[GeoPoint]) -> Optional[asyncio.Task]:
        """Replace the whole waypoint list with a single recomposition."""
        validated = [validate_point(GeoPoint(*point)) for point in points]
        self._ensure_editable()
        self._ensure_loop(len(validated))
        self._waypoints = validated
        return self._waypoints_changed()

    def _waypoints_changed(self) -> Optional[asyncio.Task]:
        # Any in-flight composition no longer matches the waypoints
        self._generation += 1

        if len(self._waypoints) < 2:
            self._composition = None
            self.route = None
            self.last_error = None
            self._tracking = False
            self._clear_progress()
            self.state = JourneyState.IDLE
            logger.debug(f"{len(self._waypoints)} waypoint(s), no route to compose")
            return None

        return self._schedule_composition()

    def _schedule_composition(self) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        generation = self._generation
        waypoints = tuple(self._waypoints)

        self.state = JourneyState.COMPOSING
        self.last_error = None
        self._compositions_started += 1

        task = loop.create_task(self._compose(generation, waypoints))
        self._composition = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        logger.debug(f"Scheduled composition {generation} for {len(waypoints)} waypoints")
        return task

    def _is_stale(self, generation: int, waypoints: Tuple[GeoPoint, ...]) -> bool:
        return generation != self._generation or waypoints != tuple(self._waypoints)

    async def _compose(self, generation: int, waypoints: Tuple[GeoPoint, ...]) -> None:
        try:
            route = await self.composer.compose(waypoints)
        except RoutingServiceFailure as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected error in composition {generation}")
            error = CompositionError(e)
        else:
            error = None

        if error is not None:
            if self._is_stale(generation, waypoints):
                self._compositions_discarded += 1
                logger.debug(f"Discarding stale failure of composition {generation}")
                return
            self._apply_failure(error)
            return

        if self._is_stale(generation, waypoints):
            self._compositions_discarded += 1
            logger.debug(f"Discarding stale route from composition {generation}")
            return
        self._apply_route(route)

    def _apply_route(self, route: Route) -> None:
        self.route = route
        self.last_error = None
        self._compositions_applied += 1
        self.state = JourneyState.TRACKING if self._tracking else JourneyState.READY

        if self._tracking and self._last_position is not None:
            self._apply_progress(self._last_position.coordinate, self._last_position.timestamp)
        else:
            self._clear_progress()
            self._refresh_eta(self._clock())

        logger.info(
            f"Route ready: {route.total_length / 1000:.2f} km over {len(route.segments)} leg(s)"
        )

    def _apply_failure(self, error: JourneyError) -> None:
        self.last_error = error
        self._compositions_failed += 1

        if self.config.keep_route_on_failure and self.route is not None:
            self.state = JourneyState.TRACKING if self._tracking else JourneyState.READY
            logger.warning(f"Keeping previous route: {error}")
            return

        self.route = None
        self._tracking = False
        self._clear_progress()
        self.state = JourneyState.IDLE
        logger.warning(f"Route composition failed: {error}")

    async def wait_until_composed(self) -> Route:
        """
        Wait for the latest composition to finish.

        Returns:
            The current route

        Raises:
            RoutingServiceFailure: If a leg of the latest composition failed
            CompositionError: If the latest composition failed otherwise
            NoRouteAvailableError: If there is no route (e.g. fewer than two waypoints)
        """
        while self._composition is not None and not self._composition.done():
            # Shielded so a cancelled waiter does not cancel the composition
            await asyncio.shield(self._composition)

        if self.last_error is not None:
            raise self.last_error
        if self.route is None:
            raise NoRouteAvailableError("No route has been composed")
        return self.route

    # Tracking

    def start(self) -> None:
        """Start tracking the composed route."""
        if self.state == JourneyState.COMPLETED:
            raise JourneyStateError("Journey is already completed")
        if self._tracking:
            # Already started, possibly recomposing after a waypoint edit
            return
        if self.state == JourneyState.COMPOSING:
            raise JourneyStateError("Route is still being composed")
        if self.route is None:
            raise NoRouteAvailableError("Cannot start a journey without a route")

        self._tracking = True
        self.state = JourneyState.TRACKING
        self.start_timestamp = self._clock()
        self._last_speed_sample = None
        self._refresh_eta(self.start_timestamp)
        logger.info(f"Journey started at {self.start_timestamp.isoformat()}")

    def update_position(self, sample: PositionSample) -> JourneySnapshot:
        """
        Apply one position sample while tracking.

        Progress uses every sample; speed only uses samples at least
        ``min_sample_interval`` seconds apart. Samples must arrive with
        non-decreasing timestamps.

        Returns:
            Snapshot of the session after the update

        Raises:
            NoRouteAvailableError: If there is no route
            JourneyStateError: If the journey has not been started
        """
        if self.state == JourneyState.COMPLETED:
            logger.debug("Journey completed, ignoring position update")
            return self.snapshot()
        if self.route is None:
            raise NoRouteAvailableError("Cannot track progress without a route")
        if not self._tracking:
            raise JourneyStateError("Journey has not been started")

        validate_point(sample.coordinate)
        self._position_updates += 1
        self._last_position = sample

        self._update_speed(sample)
        self._apply_progress(sample.coordinate, sample.timestamp)
        return self.snapshot()

    async def track(self, samples: AsyncIterable[PositionSample]) -> JourneySnapshot:
        """Consume samples in arrival order until they run out or the journey completes."""
        async for sample in samples:
            snapshot = self.update_position(sample)
            if snapshot.state == JourneyState.COMPLETED:
                break
        return self.snapshot()

    def _update_speed(self, sample: PositionSample) -> None:
        max_accuracy = self.config.max_sample_accuracy
        if max_accuracy is not None and sample.accuracy is not None and sample.accuracy > max_accuracy:
            logger.debug(
                f"Skipping speed for sample with accuracy {sample.accuracy:.0f} m (limit {max_accuracy:.0f} m)"
            )
            return

        previous = self._last_speed_sample
        if previous is None:
            self._last_speed_sample = sample
            return

        elapsed = (sample.timestamp - previous.timestamp).total_seconds()
        if elapsed < self.config.min_sample_interval:
            return

        self.speed.observe(sample.coordinate, previous.coordinate, elapsed)
        self._last_speed_sample = sample

    def _apply_progress(self, position: GeoPoint, now: datetime) -> None:
        projection = project(
            self.route,
            position,
            arrival_radius=self.config.arrival_radius,
            method=self.config.projection_method,
        )
        self.traveled_fraction = projection.fraction
        self.traveled_distance = projection.distance_traveled
        self.current_leg = self.route.leg_at_distance(projection.distance_traveled)

        if projection.fraction >= 1.0:
            self.state = JourneyState.COMPLETED
            self.remaining_time = 0.0
            self.estimated_arrival = now
            # A composition still in flight must not reopen the journey
            self._generation += 1
            logger.info(f"Journey completed at {now.isoformat()}")
            return

        self._refresh_eta(now)

    def _refresh_eta(self, now: datetime) -> None:
        if self.route is None or self.route.total_length <= 0:
            self.remaining_time = None
            self.estimated_arrival = None
            return

        remaining_distance = self.route.total_length - self.traveled_distance
        self.remaining_time, self.estimated_arrival = estimate(
            remaining_distance, self.speed.smoothed_speed, now
        )

    def progress(self, position: GeoPoint) -> Projection:
        """
        Project a position onto the current route without changing the session.

        Raises:
            NoRouteAvailableError: If there is no route
        """
        if self.route is None:
            raise NoRouteAvailableError("Cannot compute progress without a route")
        return project(
            self.route,
            validate_point(GeoPoint(*position)),
            arrival_radius=self.config.arrival_radius,
            method=self.config.projection_method,
        )

    def refresh_eta(self, now: Optional[datetime] = None) -> EtaEstimate:
        """
        Recompute remaining time and arrival from the current progress.

        Raises:
            NoRouteAvailableError: If there is no route
        """
        if self.route is None:
            raise NoRouteAvailableError("Cannot estimate arrival without a route")
        if self.state != JourneyState.COMPLETED:
            self._refresh_eta(now or self._clock())
        return EtaEstimate(self.remaining_time, self.estimated_arrival)

    def reset(self) -> None:
        """Drop waypoints, route, speed history and timers; back to IDLE."""
        self._generation += 1
        self._composition = None
        self._waypoints.clear()
        self.route = None
        self.last_error = None
        self.start_timestamp = None
        self._tracking = False
        self._last_speed_sample = None
        self._last_position = None
        self.speed.reset()
        self._clear_progress()
        self._reset_counters()
        self.state = JourneyState.IDLE
        logger.debug("Journey session reset")

    def snapshot(self) -> JourneySnapshot:
        return JourneySnapshot(
            state=self.state,
            waypoints=self.waypoints,
            route=self.route,
            traveled_fraction=self.traveled_fraction,
            traveled_distance=self.traveled_distance,
            current_leg=self.current_leg,
            current_speed=self.speed.current_speed,
            smoothed_speed=self.speed.smoothed_speed,
            remaining_time=self.remaining_time,
            estimated_arrival=self.estimated_arrival,
            start_timestamp=self.start_timestamp,
            last_error=self.last_error,
        )

    def metrics(self) -> JourneyMetrics:
        return JourneyMetrics(
            position_updates=self._position_updates,
            accepted_speed_samples=self.speed.accepted_count,
            rejected_speed_samples=self.speed.rejected_count,
            compositions_started=self._compositions_started,
            compositions_applied=self._compositions_applied,
            compositions_failed=self._compositions_failed,
            compositions_discarded=self._compositions_discarded,
        )
