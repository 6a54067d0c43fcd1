"""
Accelerometer sample sources.

SimulatedSensorSource produces gravity plus gaussian noise and accepts
injected spikes, for demo mode and manual testing. ReplaySensorSource plays
back recorded x,y,z rows from a CSV file.
"""

import asyncio
import csv
import logging
import random
from collections import deque
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from ...models import Sample
from .interfaces import SampleCallback

logger = logging.getLogger(__name__)

STANDARD_GRAVITY = 9.81


class _AsyncSampleSource:
    """Shared start/stop handling for sources driven by an asyncio task."""

    def __init__(self, sample_rate_hz: float):
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be positive")

        self.sample_rate_hz = sample_rate_hz
        self.samples_delivered = 0
        self._on_sample: Optional[SampleCallback] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def available(self) -> bool:
        return True

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_sample: SampleCallback) -> None:
        """Begin delivering samples to on_sample."""
        if self.is_running:
            logger.warning(f"{type(self).__name__} already running")
            return

        self._on_sample = on_sample
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"{type(self).__name__} started at {self.sample_rate_hz} Hz")

    def stop(self) -> None:
        """Stop delivering samples."""
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._on_sample = None

    def _next_sample(self) -> Optional[Sample]:
        raise NotImplementedError

    async def _run(self) -> None:
        interval = 1.0 / self.sample_rate_hz

        while True:
            sample = self._next_sample()
            if sample is None:
                logger.info(f"{type(self).__name__} exhausted after {self.samples_delivered} samples")
                return

            callback = self._on_sample
            if callback is None:
                return

            try:
                callback(sample)
                self.samples_delivered += 1
            except Exception as e:
                logger.error(f"Error in sample callback: {e}")

            await asyncio.sleep(interval)


class SimulatedSensorSource(_AsyncSampleSource):
    """Device at rest (gravity on z) with sensor noise and optional spikes."""

    def __init__(
        self,
        sample_rate_hz: float = 5.0,
        noise_stddev: float = 0.3,
        gravity: Tuple[float, float, float] = (0.0, 0.0, STANDARD_GRAVITY),
        seed: Optional[int] = None
    ):
        super().__init__(sample_rate_hz)
        self.noise_stddev = noise_stddev
        self.gravity = gravity
        self._random = random.Random(seed)
        self._injected: deque = deque()

    def inject_spike(self, x: float, y: float, z: float) -> None:
        """Deliver the given raw acceleration as the next sample."""
        self._injected.append(Sample(x=x, y=y, z=z))
        logger.info(f"Spike injected: ({x:.1f}, {y:.1f}, {z:.1f})")

    def inject_impact(self, magnitude: float = 60.0) -> None:
        """Inject a horizontal jolt of the given raw magnitude on top of gravity."""
        gx, gy, gz = self.gravity
        self.inject_spike(gx + magnitude, gy, gz)

    def _next_sample(self) -> Optional[Sample]:
        if self._injected:
            return self._injected.popleft()

        noise = self._random.gauss
        gx, gy, gz = self.gravity
        return Sample(
            x=gx + noise(0.0, self.noise_stddev),
            y=gy + noise(0.0, self.noise_stddev),
            z=gz + noise(0.0, self.noise_stddev)
        )


class ReplaySensorSource(_AsyncSampleSource):
    """Plays back recorded samples, optionally looping."""

    def __init__(
        self,
        rows: Sequence[Tuple[float, float, float]],
        sample_rate_hz: float = 50.0,
        loop: bool = False
    ):
        super().__init__(sample_rate_hz)
        self.rows: List[Tuple[float, float, float]] = list(rows)
        self.loop = loop
        self._position = 0

    @classmethod
    def from_csv(
        cls,
        path: Union[str, Path],
        sample_rate_hz: float = 50.0,
        loop: bool = False
    ) -> "ReplaySensorSource":
        """
        Load rows from a CSV file.

        The first three columns are x, y, z. A non-numeric first row is
        treated as a header and skipped.
        """
        rows = []
        with open(path, 'r', encoding='utf-8', newline='') as f:
            for line_no, record in enumerate(csv.reader(f), start=1):
                if not record or len(record) < 3:
                    continue
                try:
                    rows.append(tuple(float(v) for v in record[:3]))
                except ValueError:
                    if line_no == 1:
                        continue
                    raise ValueError(f"{path}:{line_no}: expected numeric x,y,z")

        logger.info(f"Loaded {len(rows)} samples from {path}")
        return cls(rows, sample_rate_hz=sample_rate_hz, loop=loop)

    @property
    def available(self) -> bool:
        return bool(self.rows)

    def _next_sample(self) -> Optional[Sample]:
        if self._position >= len(self.rows):
            if not self.loop or not self.rows:
                return None
            self._position = 0

        sample = Sample.from_values(self.rows[self._position])
        self._position += 1
        return sample


class UnavailableSensorSource:
    """Host without an accelerometer."""

    available = False

    def start(self, on_sample: SampleCallback) -> None:
        raise RuntimeError("No accelerometer available")

    def stop(self) -> None:
        pass


__all__ = [
    'SimulatedSensorSource',
    'ReplaySensorSource',
    'UnavailableSensorSource',
    'STANDARD_GRAVITY'
]
