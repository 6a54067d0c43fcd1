"""
Motion processing library for crash detection.

Classes:
    MotionFilter: Exponential gravity estimator returning linear acceleration
    ImpactDetector: Threshold detector with post-trigger suppression

Features:
    - Gravity separation with a fixed smoothing factor (default 0.8)
    - Strict greater-than threshold (default 25 m/s^2)
    - One impact per armed period; re-arming is explicit
"""

from .motion_filter import MotionFilter
from .impact_detector import ImpactDetector
from ...models import DetectionSettings


def create_impact_detector(settings: DetectionSettings) -> ImpactDetector:
    """Build a detector from configuration settings."""
    return ImpactDetector(
        threshold=settings.threshold,
        motion_filter=MotionFilter(alpha=settings.smoothing_alpha)
    )


__all__ = [
    'MotionFilter',
    'ImpactDetector',
    'create_impact_detector'
]
