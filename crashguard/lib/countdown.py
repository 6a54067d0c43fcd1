"""Monotonic clock and cancellable countdown timer on asyncio."""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class MonotonicClock:
    """Monotonic time source in milliseconds."""

    def now(self) -> float:
        return time.monotonic() * 1000.0


class CountdownHandle:
    """Handle to a scheduled countdown; cancel() stops further callbacks."""

    def __init__(self, duration_ms: float, interval_ms: float):
        self.duration_ms = duration_ms
        self.interval_ms = interval_ms
        self.cancelled = False
        self.expired = False
        self.tick_count = 0
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        """Cancel the countdown. Safe to call more than once."""
        if self.cancelled or self.expired:
            return
        self.cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.expired

    def __str__(self) -> str:
        state = "cancelled" if self.cancelled else "expired" if self.expired else "active"
        return f"CountdownHandle({self.duration_ms:.0f}ms, ticks={self.tick_count}, {state})"


class AsyncioCountdownTimer:
    """
    Ticking countdown backed by an asyncio task.

    on_tick(remaining_ms) is called immediately and then every interval;
    on_expiry() is called once when the duration has elapsed. Neither is
    called after cancel().
    """

    def schedule(
        self,
        duration_ms: float,
        interval_ms: float,
        on_tick: Callable[[float], None],
        on_expiry: Callable[[], None]
    ) -> CountdownHandle:
        """
        Start a countdown on the running event loop.

        Args:
            duration_ms: Total countdown length
            interval_ms: Tick period
            on_tick: Called with the remaining milliseconds
            on_expiry: Called once at the end

        Returns:
            Handle used to cancel the countdown
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        handle = CountdownHandle(duration_ms, interval_ms)
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle, on_tick, on_expiry)
        )
        return handle

    async def _run(
        self,
        handle: CountdownHandle,
        on_tick: Callable[[float], None],
        on_expiry: Callable[[], None]
    ) -> None:
        loop = asyncio.get_running_loop()
        interval = handle.interval_ms / 1000.0
        end = loop.time() + handle.duration_ms / 1000.0
        next_tick = loop.time()

        try:
            while next_tick < end:
                delay = next_tick - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                if handle.cancelled:
                    return
                handle.tick_count += 1
                on_tick(max(0.0, (end - loop.time()) * 1000.0))
                next_tick += interval

            delay = end - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if handle.cancelled:
                return
            handle.expired = True
            on_expiry()

        except asyncio.CancelledError:
            logger.debug(f"Countdown cancelled after {handle.tick_count} ticks")
            raise


__all__ = ['MonotonicClock', 'CountdownHandle', 'AsyncioCountdownTimer']
