"""
Remaining-time and arrival estimates, plus their display formatting.
"""

from datetime import datetime, timedelta
from typing import NamedTuple, Optional


class EtaEstimate(NamedTuple):
    """Remaining time and arrival time; both None when unknown."""

    remaining_time: Optional[float]  # seconds
    arrival: Optional[datetime]

    @property
    def is_known(self) -> bool:
        return self.remaining_time is not None


UNKNOWN_ETA = EtaEstimate(None, None)


def estimate(remaining_distance: float, speed: float, now: datetime) -> EtaEstimate:
    """
    Estimate remaining time and arrival from the distance left and current pace.

    The arrival is always anchored to ``now`` rather than to the journey
    start, so it follows the current pace.

    Args:
        remaining_distance: Meters left to travel
        speed: Smoothed speed in m/s
        now: Current time

    Returns:
        EtaEstimate, or UNKNOWN_ETA if speed is not positive
    """
    if speed <= 0:
        return UNKNOWN_ETA

    remaining_time = max(0.0, remaining_distance) / speed
    return EtaEstimate(remaining_time, now + timedelta(seconds=remaining_time))


def format_speed(speed: float) -> str:
    """Format a speed in m/s as km/h, e.g. '5.0 km/h'."""
    return f"{speed * 3.6:.1f} km/h"


def format_remaining_time(remaining_time: Optional[float]) -> str:
    """Format seconds as '1h 5m' or '12m'; '--' when unknown."""
    if remaining_time is None:
        return "--"
    hours = int(remaining_time) // 3600
    minutes = int(remaining_time) % 3600 // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_arrival_time(arrival: Optional[datetime]) -> str:
    """Format an arrival time as 'HH:MM'; 'Calculating...' when unknown."""
    if arrival is None:
        return "Calculating..."
    return arrival.strftime("%H:%M")
