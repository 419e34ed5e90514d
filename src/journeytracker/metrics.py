"""
Module for collecting and logging metrics related to a journey session.
"""

import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)


class JourneyMetrics(NamedTuple):
    """Container for journey session counters."""

    position_updates: int
    accepted_speed_samples: int
    rejected_speed_samples: int
    compositions_started: int
    compositions_applied: int
    compositions_failed: int
    compositions_discarded: int


def log_metrics(metrics: JourneyMetrics, enabled: bool = True) -> None:
    """
    Log a structured metrics block at debug level.

    Args:
        metrics: JourneyMetrics to log
        enabled: Whether metrics output was requested
    """
    if not enabled:
        return

    logger.debug("=== JOURNEY_METRICS ===")
    for name, value in metrics._asdict().items():
        logger.debug(f"{name}={value}")
    logger.debug("=== END_JOURNEY_METRICS ===")
