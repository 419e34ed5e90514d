from datetime import timedelta

import pytest

from journeytracker.config import JourneyConfig, ProjectionMethod
from journeytracker.errors import (
    CompositionError,
    JourneyStateError,
    NoRouteAvailableError,
    NoRouteFoundError,
    RoutingServiceFailure,
)
from journeytracker.geometry import GeoPoint
from journeytracker.session import JourneySession, JourneyState, PositionSample

from conftest import START_TIME, FakeRoutingService, east_of

A = GeoPoint(0.0, 0.0)
B = GeoPoint(0.0, 0.01)
C = GeoPoint(0.0, 0.02)


def sample(meters_east: float, seconds: float, accuracy=None) -> PositionSample:
    return PositionSample(
        coordinate=east_of(A, meters_east),
        timestamp=START_TIME + timedelta(seconds=seconds),
        accuracy=accuracy,
    )


def make_session(service=None, clock=None, **config) -> JourneySession:
    return JourneySession.with_service(
        service or FakeRoutingService(), JourneyConfig(**config), clock=clock
    )


async def ready_session(waypoints=(A, B), **kwargs) -> JourneySession:
    session = make_session(**kwargs)
    session.set_waypoints(list(waypoints))
    await session.wait_until_composed()
    return session


class TestWaypointEditing:
    @pytest.mark.asyncio
    async def test_initial_state(self):
        session = make_session()
        snapshot = session.snapshot()

        assert snapshot.state == JourneyState.IDLE
        assert snapshot.route is None
        assert snapshot.waypoints == ()
        assert snapshot.traveled_fraction == 0.0
        assert snapshot.smoothed_speed == 1.4
        assert snapshot.remaining_time is None
        assert snapshot.remaining_distance == 0.0

    @pytest.mark.asyncio
    async def test_single_waypoint_stays_idle(self):
        session = make_session()

        assert session.add_waypoint(A) is None

        assert session.state == JourneyState.IDLE
        assert session.waypoints == (A,)

    @pytest.mark.asyncio
    async def test_second_waypoint_composes_route(self, clock):
        session = make_session(clock=clock)
        session.add_waypoint(A)

        task = session.add_waypoint(B)
        assert task is not None
        assert session.state == JourneyState.COMPOSING

        route = await session.wait_until_composed()

        assert session.state == JourneyState.READY
        assert route.waypoints == (A, B)
        assert session.remaining_time == pytest.approx(route.total_length / 1.4)
        assert session.estimated_arrival == clock.now + timedelta(
            seconds=session.remaining_time
        )

    @pytest.mark.asyncio
    async def test_removing_below_two_waypoints_drops_route(self):
        session = await ready_session()

        session.remove_waypoint(0)

        assert session.state == JourneyState.IDLE
        assert session.route is None
        assert session.waypoints == (B,)
        with pytest.raises(NoRouteAvailableError):
            await session.wait_until_composed()

    @pytest.mark.asyncio
    async def test_remove_out_of_range_is_ignored(self):
        session = await ready_session()
        route = session.route

        assert session.remove_waypoint(5) is None
        assert session.remove_waypoint(-1) is None

        assert session.waypoints == (A, B)
        assert session.route is route
        assert session.state == JourneyState.READY

    @pytest.mark.asyncio
    async def test_clear_waypoints(self):
        session = await ready_session()

        session.clear_waypoints()

        assert session.state == JourneyState.IDLE
        assert session.waypoints == ()
        assert session.route is None

    def test_editing_outside_event_loop_leaves_session_unchanged(self):
        session = make_session()
        session.add_waypoint(A)

        with pytest.raises(RuntimeError):
            session.add_waypoint(B)
        with pytest.raises(RuntimeError):
            session.set_waypoints([A, B])

        assert session.waypoints == (A,)
        assert session.state == JourneyState.IDLE
        assert session.route is None

    @pytest.mark.asyncio
    async def test_invalid_waypoint_is_rejected(self):
        session = make_session()

        with pytest.raises(ValueError):
            session.add_waypoint(GeoPoint(91.0, 0.0))
        with pytest.raises(ValueError):
            session.set_waypoints([A, GeoPoint(0.0, float("nan"))])

        assert session.waypoints == ()

    @pytest.mark.asyncio
    async def test_stale_composition_is_discarded(self):
        service = FakeRoutingService(delays={B: 0.05})
        session = make_session(service=service)

        stale = session.set_waypoints([A, B])
        session.set_waypoints([A, C])

        route = await session.wait_until_composed()
        assert route.destination == C

        # Let the superseded composition finish; it must not replace the route
        await stale
        assert session.route is route
        assert session.state == JourneyState.READY
        assert session.metrics().compositions_discarded == 1
        assert session.metrics().compositions_applied == 1

    @pytest.mark.asyncio
    async def test_stale_failure_is_not_reported(self):
        service = FakeRoutingService(
            delays={B: 0.05}, failures={B: NoRouteFoundError("no path")}
        )
        session = make_session(service=service)

        stale = session.set_waypoints([A, B])
        session.set_waypoints([A, C])
        await stale

        assert session.last_error is None
        assert session.route.destination == C


class TestCompositionFailure:
    @pytest.mark.asyncio
    async def test_failure_leaves_no_route(self):
        service = FakeRoutingService(failures={1: NoRouteFoundError("river")})
        session = make_session(service=service)
        session.set_waypoints([A, B, C])

        with pytest.raises(RoutingServiceFailure) as exc_info:
            await session.wait_until_composed()

        assert exc_info.value.failed_legs == [1]
        assert session.state == JourneyState.IDLE
        assert session.route is None
        assert session.last_error is exc_info.value
        with pytest.raises(NoRouteAvailableError):
            session.start()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_surfaced_and_recoverable(self):
        service = FakeRoutingService(failures={0: RuntimeError("adapter bug")})
        session = make_session(service=service)
        session.set_waypoints([A, B])

        with pytest.raises(CompositionError) as exc_info:
            await session.wait_until_composed()

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert session.state == JourneyState.IDLE
        assert session.route is None
        assert session.last_error is exc_info.value
        assert session.metrics().compositions_failed == 1
        with pytest.raises(NoRouteAvailableError):
            session.start()

        service.failures.clear()
        session.set_waypoints([A, B])
        await session.wait_until_composed()
        assert session.state == JourneyState.READY
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_keep_route_on_failure(self):
        service = FakeRoutingService(failures={C: NoRouteFoundError("river")})
        session = await ready_session(service=service, keep_route_on_failure=True)
        route = session.route

        session.add_waypoint(C)
        with pytest.raises(RoutingServiceFailure):
            await session.wait_until_composed()

        assert session.route is route
        assert session.state == JourneyState.READY
        assert session.snapshot().last_error is not None

    @pytest.mark.asyncio
    async def test_successful_recomposition_clears_error(self):
        service = FakeRoutingService(failures={C: NoRouteFoundError("river")})
        session = make_session(service=service)
        session.set_waypoints([A, C])
        with pytest.raises(RoutingServiceFailure):
            await session.wait_until_composed()

        session.set_waypoints([A, B])
        await session.wait_until_composed()

        assert session.last_error is None
        assert session.state == JourneyState.READY


class TestTracking:
    @pytest.mark.asyncio
    async def test_start_requires_route(self):
        session = make_session()
        with pytest.raises(NoRouteAvailableError):
            session.start()

    @pytest.mark.asyncio
    async def test_start_while_composing_is_refused(self):
        session = make_session()
        session.set_waypoints([A, B])

        with pytest.raises(JourneyStateError):
            session.start()

        await session.wait_until_composed()

    @pytest.mark.asyncio
    async def test_start_while_recomposing_keeps_tracking(self, clock):
        session = await ready_session(clock=clock)
        session.start()
        started = session.start_timestamp
        clock.advance(60.0)

        session.add_waypoint(C)
        assert session.state == JourneyState.COMPOSING
        session.start()

        assert session.start_timestamp == started
        await session.wait_until_composed()
        assert session.state == JourneyState.TRACKING

    @pytest.mark.asyncio
    async def test_update_before_start_is_refused(self):
        session = await ready_session()
        with pytest.raises(JourneyStateError):
            session.update_position(sample(0.0, 0.0))

    @pytest.mark.asyncio
    async def test_start_records_timestamp(self, clock):
        session = await ready_session(clock=clock)

        session.start()
        session.start()

        assert session.state == JourneyState.TRACKING
        assert session.start_timestamp == clock.now

    @pytest.mark.asyncio
    async def test_first_sample_only_anchors_speed(self):
        session = await ready_session()
        session.start()

        snapshot = session.update_position(sample(0.0, 0.0))

        assert session.speed.accepted_count == 0
        assert snapshot.smoothed_speed == 1.4
        assert snapshot.current_speed == 0.0

    @pytest.mark.asyncio
    async def test_progress_speed_and_eta(self):
        session = await ready_session(projection_method=ProjectionMethod.SEGMENT)
        session.start()
        total = session.route.total_length

        for i in range(4):
            last = sample(20.0 * i, 10.0 * i)
            snapshot = session.update_position(last)

        assert snapshot.state == JourneyState.TRACKING
        assert snapshot.smoothed_speed == pytest.approx(2.0, rel=1e-3)
        assert snapshot.traveled_distance == pytest.approx(60.0, abs=1.0)
        assert snapshot.remaining_distance == pytest.approx(total - 60.0, abs=1.0)
        assert snapshot.remaining_time == pytest.approx((total - 60.0) / 2.0, abs=1.0)
        assert snapshot.estimated_arrival == last.timestamp + timedelta(
            seconds=snapshot.remaining_time
        )
        assert snapshot.current_leg == 0

    @pytest.mark.asyncio
    async def test_speed_samples_are_throttled(self):
        session = await ready_session()
        session.start()

        session.update_position(sample(0.0, 0.0))
        session.update_position(sample(1.5, 1.0))
        assert session.speed.accepted_count == 0

        session.update_position(sample(3.0, 2.0))
        assert session.speed.accepted_count == 1
        assert session.speed.current_speed == pytest.approx(1.5, rel=1e-3)
        assert session.metrics().position_updates == 3

    @pytest.mark.asyncio
    async def test_inaccurate_samples_skip_speed(self):
        session = await ready_session(max_sample_accuracy=20.0)
        session.start()

        session.update_position(sample(0.0, 0.0, accuracy=5.0))
        session.update_position(sample(20.0, 10.0, accuracy=80.0))
        assert session.speed.accepted_count == 0

        session.update_position(sample(30.0, 20.0, accuracy=5.0))
        assert session.speed.current_speed == pytest.approx(1.5, rel=1e-3)

    @pytest.mark.asyncio
    async def test_arrival_completes_journey(self):
        session = await ready_session()
        session.start()
        session.update_position(sample(0.0, 0.0))

        arrival = sample(session.route.total_length - 10.0, 600.0)
        snapshot = session.update_position(arrival)

        assert snapshot.state == JourneyState.COMPLETED
        assert snapshot.traveled_fraction == 1.0
        assert snapshot.remaining_time == 0.0
        assert snapshot.estimated_arrival == arrival.timestamp

    @pytest.mark.asyncio
    async def test_completed_journey_is_frozen(self):
        session = await ready_session()
        session.start()
        session.update_position(sample(session.route.total_length, 0.0))
        updates = session.metrics().position_updates

        snapshot = session.update_position(sample(0.0, 10.0))

        assert snapshot.state == JourneyState.COMPLETED
        assert snapshot.traveled_fraction == 1.0
        assert session.metrics().position_updates == updates
        with pytest.raises(JourneyStateError):
            session.add_waypoint(C)
        with pytest.raises(JourneyStateError):
            session.start()

    @pytest.mark.asyncio
    async def test_recomposition_while_tracking_keeps_tracking(self):
        session = await ready_session(projection_method=ProjectionMethod.SEGMENT)
        session.start()
        session.update_position(sample(500.0, 0.0))
        first_fraction = session.traveled_fraction

        session.add_waypoint(C)
        assert session.state == JourneyState.COMPOSING
        await session.wait_until_composed()

        assert session.state == JourneyState.TRACKING
        assert session.traveled_distance == pytest.approx(500.0, abs=1.0)
        assert session.traveled_fraction < first_fraction
        assert session.current_leg == 0

    @pytest.mark.asyncio
    async def test_track_consumes_async_samples(self):
        session = await ready_session()
        session.start()
        total = session.route.total_length

        async def samples():
            for i in range(20):
                yield sample(min(total, 100.0 * i), 60.0 * i)

        snapshot = await session.track(samples())

        assert snapshot.state == JourneyState.COMPLETED
        assert session.metrics().position_updates < 20

    @pytest.mark.asyncio
    async def test_zero_length_route_has_unknown_eta(self):
        session = await ready_session(waypoints=(A, A))
        session.start()

        snapshot = session.update_position(sample(0.0, 0.0))

        assert snapshot.state == JourneyState.TRACKING
        assert snapshot.traveled_fraction == 0.0
        assert snapshot.remaining_time is None
        assert snapshot.estimated_arrival is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_progress_does_not_change_state(self):
        session = await ready_session()

        projection = session.progress(east_of(A, 555.0))

        assert projection.fraction == pytest.approx(0.5)
        assert session.traveled_fraction == 0.0

    @pytest.mark.asyncio
    async def test_queries_without_route(self):
        session = make_session()
        with pytest.raises(NoRouteAvailableError):
            session.progress(A)
        with pytest.raises(NoRouteAvailableError):
            session.refresh_eta()

    @pytest.mark.asyncio
    async def test_refresh_eta_uses_given_time(self, clock):
        session = await ready_session(clock=clock)
        later = clock.now + timedelta(minutes=5)

        eta = session.refresh_eta(later)

        assert eta.arrival == later + timedelta(seconds=eta.remaining_time)
        assert session.estimated_arrival == eta.arrival

    @pytest.mark.asyncio
    async def test_reset_returns_to_idle(self):
        session = await ready_session()
        session.start()
        for i in range(3):
            session.update_position(sample(20.0 * i, 10.0 * i))
        assert session.speed.has_samples

        session.reset()

        snapshot = session.snapshot()
        assert snapshot.state == JourneyState.IDLE
        assert snapshot.waypoints == ()
        assert snapshot.route is None
        assert snapshot.start_timestamp is None
        assert snapshot.smoothed_speed == 1.4
        assert session.speed.history == ()
        assert session.metrics().position_updates == 0

        # The next journey starts speed estimation from scratch
        session.set_waypoints([A, B])
        await session.wait_until_composed()
        session.start()
        session.update_position(sample(0.0, 100.0))
        assert session.speed.history == ()
        assert session.speed.smoothed_speed == 1.4

        session.update_position(sample(30.0, 110.0))
        assert session.speed.history == pytest.approx((3.0,), rel=1e-3)

    @pytest.mark.asyncio
    async def test_reset_after_completion_allows_new_journey(self):
        session = await ready_session()
        session.start()
        session.update_position(sample(session.route.total_length, 0.0))
        assert session.state == JourneyState.COMPLETED

        session.reset()
        session.set_waypoints([B, C])
        route = await session.wait_until_composed()

        assert route.origin == B
        assert session.state == JourneyState.READY

    @pytest.mark.asyncio
    async def test_reset_discards_in_flight_composition(self):
        service = FakeRoutingService(delays={B: 0.02})
        session = make_session(service=service)
        task = session.set_waypoints([A, B])

        session.reset()
        await task

        assert session.state == JourneyState.IDLE
        assert session.route is None
