"""Capability interfaces the crash monitor consumes from its host."""

from typing import Callable, Iterable, Optional, Protocol, runtime_checkable

from ...models import Sample, LocationFix, Capability


SampleCallback = Callable[[Sample], None]


@runtime_checkable
class SensorSource(Protocol):
    """Delivers accelerometer samples at a host-chosen rate."""

    @property
    def available(self) -> bool:
        """False when the host has no accelerometer."""
        ...

    def start(self, on_sample: SampleCallback) -> None:
        ...

    def stop(self) -> None:
        ...


@runtime_checkable
class LocationProvider(Protocol):
    """Resolves the device location."""

    async def get_last_known(self) -> Optional[LocationFix]:
        """Fast path; may return None."""
        ...

    async def get_fresh_fix(self, priority: str) -> Optional[LocationFix]:
        """Slower request for a new fix; may return None or raise."""
        ...


@runtime_checkable
class MessageSender(Protocol):
    """Sends a text message; raises SendFailureError on failure."""

    async def send(self, recipient: str, body: str) -> None:
        ...


@runtime_checkable
class Clock(Protocol):
    """Monotonic time in milliseconds."""

    def now(self) -> float:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


@runtime_checkable
class Timer(Protocol):
    """Schedules a cancellable ticking countdown."""

    def schedule(
        self,
        duration_ms: float,
        interval_ms: float,
        on_tick: Callable[[float], None],
        on_expiry: Callable[[], None]
    ) -> TimerHandle:
        ...


@runtime_checkable
class PermissionGate(Protocol):
    """Answers and requests host permissions."""

    def has(self, capability: Capability) -> bool:
        ...

    def request(self, capabilities: Iterable[Capability]) -> None:
        """Fire-and-forget permission request."""
        ...


__all__ = [
    'SampleCallback',
    'SensorSource',
    'LocationProvider',
    'MessageSender',
    'Clock',
    'Timer',
    'TimerHandle',
    'PermissionGate'
]
