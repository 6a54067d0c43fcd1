"""
Gravity separation filter for accelerometer streams.

Keeps an exponentially smoothed estimate of the gravity vector and returns
the magnitude of what is left over (linear acceleration) for every sample.
The estimate starts at zero, so the first few samples of a session report
part of gravity as linear acceleration.
"""

import logging
import math
import threading
from typing import Tuple

from ...models import Sample

logger = logging.getLogger(__name__)


class MotionFilter:
    """
    Exponential low-pass gravity estimator.

    For each axis: gravity = alpha * gravity + (1 - alpha) * sample,
    linear = sample - gravity. update() returns |linear|.
    """

    def __init__(self, alpha: float = 0.8):
        """
        Initialize motion filter.

        Args:
            alpha: Smoothing factor, strictly between 0 and 1 (default 0.8)
        """
        if not 0.0 < alpha < 1.0:
            raise ValueError(f"alpha must be between 0 and 1 (exclusive), got {alpha}")

        self.alpha = alpha
        self._gravity = [0.0, 0.0, 0.0]
        self._sample_count = 0
        self._lock = threading.Lock()

        logger.debug(f"MotionFilter initialized with alpha={alpha}")

    def update(self, sample: Sample) -> float:
        """
        Feed one sample and return its linear acceleration magnitude.

        Args:
            sample: Raw 3-axis accelerometer sample

        Returns:
            Euclidean norm of the sample with the gravity estimate removed
        """
        values = sample.as_tuple()
        alpha = self.alpha

        with self._lock:
            squared = 0.0
            for axis in range(3):
                self._gravity[axis] = alpha * self._gravity[axis] + (1 - alpha) * values[axis]
                linear = values[axis] - self._gravity[axis]
                squared += linear * linear
            self._sample_count += 1

        return math.sqrt(squared)

    def reset(self) -> None:
        """Zero the gravity estimate. Only done when monitoring restarts."""
        with self._lock:
            self._gravity = [0.0, 0.0, 0.0]
            self._sample_count = 0
        logger.debug("Gravity estimate reset")

    @property
    def gravity(self) -> Tuple[float, float, float]:
        """Current gravity estimate (gx, gy, gz)."""
        with self._lock:
            return tuple(self._gravity)

    @property
    def sample_count(self) -> int:
        """Samples processed since the last reset."""
        return self._sample_count

    def __str__(self) -> str:
        gx, gy, gz = self.gravity
        return (
            f"MotionFilter(alpha={self.alpha}, "
            f"gravity=({gx:.2f}, {gy:.2f}, {gz:.2f}), samples={self._sample_count})"
        )


__all__ = ['MotionFilter']
