"""
Impact detection on top of the gravity filter.

Compares linear acceleration magnitude against a fixed threshold and emits a
single ImpactEvent per armed period. Once fired, the detector stays
suppressed until it is explicitly re-armed; the monitoring controller also
stops sample delivery for the duration of the alert.
"""

import logging
from typing import Optional

from ...models import Sample, ImpactEvent, DetectorState
from .motion_filter import MotionFilter

logger = logging.getLogger(__name__)


class ImpactDetector:
    """Single-threshold impact detector with post-trigger suppression."""

    def __init__(
        self,
        threshold: float = 25.0,
        motion_filter: Optional[MotionFilter] = None,
        alpha: float = 0.8
    ):
        """
        Initialize impact detector.

        Args:
            threshold: Linear acceleration (m/s^2) that must be strictly exceeded
            motion_filter: Filter to use (a new one with `alpha` if omitted)
            alpha: Smoothing factor for the default filter
        """
        if threshold <= 0:
            raise ValueError("threshold must be positive")

        self.threshold = threshold
        self.motion_filter = motion_filter or MotionFilter(alpha=alpha)
        self.state = DetectorState.IDLE

        self.trigger_count = 0
        self.last_magnitude = 0.0
        self.peak_magnitude = 0.0

        logger.info(f"ImpactDetector initialized with threshold {threshold}")

    def on_sample(self, sample: Sample) -> Optional[ImpactEvent]:
        """
        Process a sample and detect an impact.

        Args:
            sample: Raw accelerometer sample

        Returns:
            ImpactEvent if the detector was armed and the threshold was exceeded
        """
        magnitude = self.motion_filter.update(sample)
        self.last_magnitude = magnitude
        if magnitude > self.peak_magnitude:
            self.peak_magnitude = magnitude

        if self.state != DetectorState.ARMED or not magnitude > self.threshold:
            return None

        self.state = DetectorState.SUPPRESSED
        self.trigger_count += 1

        logger.debug(f"Crash-like acceleration detected: {magnitude:.2f}")
        return ImpactEvent(magnitude=magnitude, threshold=self.threshold, sample=sample)

    def arm(self) -> None:
        """Start watching for impacts. The gravity estimate is kept."""
        if self.state != DetectorState.ARMED:
            logger.debug(f"Detector armed (was {self.state.value})")
        self.state = DetectorState.ARMED

    def disarm(self) -> None:
        """Stop watching for impacts."""
        self.state = DetectorState.IDLE

    def suppress(self) -> None:
        """Hand control to an alert sequence without an impact (manual trigger)."""
        self.state = DetectorState.SUPPRESSED

    def reset(self) -> None:
        """Clear the gravity estimate and magnitude tracking."""
        self.motion_filter.reset()
        self.last_magnitude = 0.0
        self.peak_magnitude = 0.0

    @property
    def is_armed(self) -> bool:
        return self.state == DetectorState.ARMED

    @property
    def gravity(self):
        return self.motion_filter.gravity

    def __str__(self) -> str:
        return (
            f"ImpactDetector(threshold={self.threshold}, state={self.state.value}, "
            f"triggers={self.trigger_count})"
        )


__all__ = ['ImpactDetector']
