#!/usr/bin/env python3
"""
Journey Tracker - route progress and arrival estimation for walking journeys.

This package composes a route through ordered waypoints from concurrently
routed legs, matches live positions to it, and keeps smoothed speed and
arrival estimates while the journey is tracked.
"""
import importlib.metadata

__version__ = importlib.metadata.version("journeytracker")

# Import main classes for public API
from .config import JourneyConfig, ProjectionMethod, TravelMode
from .errors import (
    CompositionError,
    InsufficientWaypointsError,
    JourneyError,
    JourneyStateError,
    NoRouteAvailableError,
    NoRouteFoundError,
    RoutingError,
    RoutingServiceError,
    RoutingServiceFailure,
)
from .geometry import GeoPoint
from .route import Route
from .routing import OSRMRoutingService, RouteSegment, RoutingService
from .composer import RouteComposer
from .session import JourneySession, JourneySnapshot, JourneyState, PositionSample

__all__ = [
    "GeoPoint",
    "JourneyConfig",
    "ProjectionMethod",
    "TravelMode",
    "Route",
    "RouteSegment",
    "RoutingService",
    "OSRMRoutingService",
    "RouteComposer",
    "JourneySession",
    "JourneySnapshot",
    "JourneyState",
    "PositionSample",
    "JourneyError",
    "InsufficientWaypointsError",
    "RoutingError",
    "RoutingServiceError",
    "NoRouteFoundError",
    "RoutingServiceFailure",
    "CompositionError",
    "NoRouteAvailableError",
    "JourneyStateError",
]
