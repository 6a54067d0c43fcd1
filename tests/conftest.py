"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest
import pytest_asyncio

# Allow running the tests from a checkout without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from crashguard.models import Capability, MonitorConfiguration, Sample
from crashguard.lib.capabilities import (
    LogMessageSender,
    StaticLocationProvider,
    StaticPermissionGate,
)
from crashguard.services import MonitoringController


CONTACT = "+15551234567"
LATITUDE = 1.234567
LONGITUDE = 2.345678


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: float = 1000.0):
        self.now_ms = start_ms

    def now(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> float:
        self.now_ms += ms
        return self.now_ms


class FakeTimerHandle:
    """Scheduled countdown whose ticks and expiry are fired by the test."""

    def __init__(self, duration_ms, interval_ms, on_tick, on_expiry):
        self.duration_ms = duration_ms
        self.interval_ms = interval_ms
        self.on_tick = on_tick
        self.on_expiry = on_expiry
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def tick(self, remaining_ms: float = 0.0) -> None:
        if not self.cancelled:
            self.on_tick(remaining_ms)

    def expire(self) -> None:
        if not self.cancelled:
            self.on_expiry()


class FakeTimer:
    """Timer that records schedules instead of running them."""

    def __init__(self):
        self.handles: List[FakeTimerHandle] = []

    def schedule(self, duration_ms, interval_ms, on_tick, on_expiry) -> FakeTimerHandle:
        handle = FakeTimerHandle(duration_ms, interval_ms, on_tick, on_expiry)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> Optional[FakeTimerHandle]:
        return self.handles[-1] if self.handles else None


class FakeSensorSource:
    """Sensor source whose samples are pushed by the test."""

    def __init__(self, available: bool = True):
        self.available = available
        self.start_count = 0
        self.stop_count = 0
        self._on_sample: Optional[Callable[[Sample], None]] = None

    @property
    def running(self) -> bool:
        return self._on_sample is not None

    def start(self, on_sample) -> None:
        self.start_count += 1
        self._on_sample = on_sample

    def stop(self) -> None:
        self.stop_count += 1
        self._on_sample = None

    def emit(self, x: float, y: float, z: float) -> bool:
        """Deliver one sample if running. Returns whether it was delivered."""
        if self._on_sample is None:
            return False
        self._on_sample(Sample(x=x, y=y, z=z))
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def sensor():
    return FakeSensorSource()


@pytest.fixture
def sender():
    return LogMessageSender()


@pytest.fixture
def location():
    return StaticLocationProvider.at(LATITUDE, LONGITUDE)


@pytest.fixture
def gate():
    return StaticPermissionGate(granted=list(Capability))


@pytest.fixture
def configuration():
    return MonitorConfiguration(contact=CONTACT)


@pytest_asyncio.fixture
async def controller(configuration, sensor, location, sender, gate, clock, timer):
    """Started controller on fake clock/timer; stopped after the test."""
    controller = MonitoringController(
        configuration=configuration,
        sensor_source=sensor,
        location_provider=location,
        message_sender=sender,
        permission_gate=gate,
        clock=clock,
        timer=timer
    )
    await controller.start()
    yield controller
    await controller.stop()
