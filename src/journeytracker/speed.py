"""
Rolling-window speed estimation from consecutive position fixes.
"""

from collections import deque
from typing import Deque, Optional, Tuple
import logging

from .geometry import GeoPoint, haversine_distance

logger = logging.getLogger(__name__)


class SpeedEstimator:
    """Smooths instantaneous speeds over the last few accepted samples."""

    def __init__(
        self,
        default_speed: float = 1.4,
        min_speed: float = 0.1,
        max_speed: float = 10.0,
        history_size: int = 10,
    ):
        """Initializes a SpeedEstimator.

        Args:
            default_speed: Smoothed speed reported before any sample is accepted (m/s).
            min_speed: Samples at or below this speed are treated as stationary noise (m/s).
            max_speed: Samples at or above this speed are treated as GPS jumps (m/s).
            history_size: Number of accepted samples averaged into the smoothed speed.
        """
        self.default_speed = default_speed
        self.min_speed = min_speed
        self.max_speed = max_speed
        self._history: Deque[float] = deque(maxlen=history_size)
        self.current_speed = 0.0
        self.smoothed_speed = default_speed
        self.accepted_count = 0
        self.rejected_count = 0

    @property
    def history(self) -> Tuple[float, ...]:
        """Accepted speeds, oldest first."""
        return tuple(self._history)

    @property
    def has_samples(self) -> bool:
        """True once at least one sample has been accepted."""
        return bool(self._history)

    def observe(
        self,
        current: GeoPoint,
        previous: Optional[GeoPoint],
        elapsed: float,
    ) -> Optional[float]:
        """
        Feed one pair of consecutive fixes into the estimator.

        Args:
            current: Most recent position
            previous: Position of the previous fix, if any
            elapsed: Seconds between the two fixes

        Returns:
            The new smoothed speed in m/s, or None if the sample was ignored
            or rejected
        """
        if previous is None or elapsed <= 0:
            logger.debug(
                f"Ignoring speed sample (previous={'set' if previous else 'missing'}, elapsed={elapsed:.2f}s)"
            )
            return None

        speed = haversine_distance(current, previous) / elapsed

        if not self.min_speed < speed < self.max_speed:
            self.rejected_count += 1
            logger.debug(
                f"Rejected speed sample {speed:.2f} m/s outside ({self.min_speed}, {self.max_speed})"
            )
            return None

        self.accepted_count += 1
        self.current_speed = speed
        self._history.append(speed)
        self.smoothed_speed = sum(self._history) / len(self._history)

        logger.debug(
            f"Accepted speed sample {speed:.2f} m/s, smoothed {self.smoothed_speed:.2f} m/s "
            f"over {len(self._history)} samples"
        )
        return self.smoothed_speed

    def reset(self) -> None:
        """Forget all samples and return to the default speed."""
        self._history.clear()
        self.current_speed = 0.0
        self.smoothed_speed = self.default_speed
        self.accepted_count = 0
        self.rejected_count = 0
