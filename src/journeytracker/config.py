from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TravelMode(Enum):
    """Travel modes understood by routing services."""

    WALKING = "walking"

    def __str__(self) -> str:
        return self.value


class ProjectionMethod(Enum):
    """How a live position is matched to the route polyline."""

    VERTEX = "vertex"
    SEGMENT = "segment"

    def __str__(self) -> str:
        return self.value


@dataclass
class JourneyConfig:
    """Configuration for a journey session."""

    default_speed: float = 1.4  # m/s, about 5 km/h walking pace
    min_speed: float = 0.1
    max_speed: float = 10.0
    speed_history_size: int = 10
    min_sample_interval: float = 2.0  # seconds between speed samples
    arrival_radius: float = 50.0  # meters from destination counted as arrived
    projection_method: ProjectionMethod = ProjectionMethod.VERTEX
    keep_route_on_failure: bool = False
    max_sample_accuracy: Optional[float] = None  # meters, None accepts all
    travel_mode: TravelMode = TravelMode.WALKING

    def __post_init__(self):
        if self.default_speed <= 0:
            raise ValueError(
                f"Default speed must be positive, got {self.default_speed} m/s"
            )
        if not 0 <= self.min_speed < self.max_speed:
            raise ValueError(
                f"Speed bounds must satisfy 0 <= min < max, got {self.min_speed}..{self.max_speed}"
            )
        if self.speed_history_size < 1:
            raise ValueError(
                f"Speed history size must be at least 1, got {self.speed_history_size}"
            )
        if self.min_sample_interval < 0:
            raise ValueError(
                f"Minimum sample interval cannot be negative, got {self.min_sample_interval}"
            )
        if self.arrival_radius < 0:
            raise ValueError(
                f"Arrival radius cannot be negative, got {self.arrival_radius}"
            )
