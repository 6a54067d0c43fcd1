"""MonitoringController: single-timeline coordinator for detection, countdown and escalation."""

import asyncio
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

import structlog

from ..models import (
    AlertSession,
    AlertTrigger,
    Capability,
    EscalationOutcome,
    ImpactEvent,
    MonitorConfiguration,
    MonitorStatus,
    Sample,
    SequencerState,
)
from ..errors import AlertAlreadyActiveError, CrashGuardError, InvalidContactError
from ..lib.capabilities.interfaces import (
    Clock,
    LocationProvider,
    MessageSender,
    PermissionGate,
    SensorSource,
    Timer,
)
from ..lib.countdown import AsyncioCountdownTimer, MonotonicClock
from ..lib.motion import MotionFilter, create_impact_detector
from .alert_sequencer import AlertSequencer
from .escalation_service import EscalationService


logger = structlog.get_logger(__name__)

StatusCallback = Callable[[MonitorStatus], Any]
_Command = Tuple[Callable[..., Any], tuple, Optional[asyncio.Future]]


class MonitoringController:
    """
    Top-level coordinator.

    Every input (sensor sample, countdown tick and expiry, escalation result,
    user request) is queued and handled by one consumer task, so detector,
    sequencer and status are only ever mutated on a single timeline.
    """

    def __init__(
        self,
        configuration: MonitorConfiguration,
        sensor_source: Optional[SensorSource],
        location_provider: LocationProvider,
        message_sender: MessageSender,
        permission_gate: PermissionGate,
        clock: Optional[Clock] = None,
        timer: Optional[Timer] = None
    ):
        """Initialize the monitoring controller."""
        self.configuration = configuration
        self.sensor_source = sensor_source
        self.permission_gate = permission_gate
        self.clock = clock or MonotonicClock()
        self.timer = timer or AsyncioCountdownTimer()

        self.detector = create_impact_detector(configuration.detection)
        self.sequencer = AlertSequencer(
            clock=self.clock,
            timer=self.timer,
            countdown_ms=configuration.countdown.duration_ms,
            tick_interval_ms=configuration.countdown.tick_interval_ms,
            on_tick=self._on_timer_tick,
            on_expiry=self._on_timer_expiry
        )
        self.escalation = EscalationService(
            location_provider=location_provider,
            message_sender=message_sender,
            permission_gate=permission_gate,
            location_settings=configuration.location,
            message_settings=configuration.message
        )

        # Monitoring state
        self.enabled = False
        self.is_running = False
        self._sampling = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._escalation_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

        # Observers
        self.status = MonitorStatus.disabled()
        self.status_history: Deque[MonitorStatus] = deque(maxlen=100)
        self.status_history.append(self.status)
        self.status_callbacks: List[StatusCallback] = []
        self.recent_sessions: Deque[AlertSession] = deque(maxlen=20)
        self.last_impact: Optional[ImpactEvent] = None

        # Statistics
        self.started_at: Optional[datetime] = None
        self.samples_processed = 0
        self.samples_dropped = 0
        self.impacts_detected = 0
        self.error_count = 0

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Start the event consumer."""
        if self.is_running:
            logger.warning("Monitoring controller already running")
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._consumer_task = asyncio.create_task(self._consume())
        self.is_running = True
        self.started_at = datetime.now()

        missing = [c for c in (Capability.LOCATION, Capability.SMS) if not self.permission_gate.has(c)]
        if missing:
            self.permission_gate.request(missing)

        logger.info("Monitoring controller started",
                    contact_configured=self.configuration.has_contact,
                    threshold=self.detector.threshold)

    async def stop(self) -> None:
        """Disable monitoring, cancel any countdown and stop the consumer."""
        if not self.is_running:
            return

        await self._submit(self._handle_shutdown)
        self.is_running = False

        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        logger.info("Monitoring controller stopped")

    async def __aenter__(self) -> "MonitoringController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Public operations

    async def enable(self) -> bool:
        """Turn crash detection on. Returns False if it cannot be enabled."""
        return await self._submit(self._handle_enable)

    async def disable(self) -> None:
        """Turn crash detection off. An alert already in progress still concludes."""
        await self._submit(self._handle_disable)

    async def simulate(self) -> AlertSession:
        """
        Start an alert with the configured contact, bypassing the detector.

        Raises:
            InvalidContactError: no contact configured
            AlertAlreadyActiveError: an alert is pending or being sent
        """
        return await self._submit(self._handle_simulate)

    async def cancel(self) -> bool:
        """Cancel a pending alert. Returns False if there was nothing to cancel
        or the countdown had already expired."""
        return await self._submit(self._handle_cancel)

    async def set_contact(self, contact: str) -> None:
        """Change the emergency contact used by the next alert."""
        await self._submit(self._handle_set_contact, contact)

    async def update_configuration(self, configuration: MonitorConfiguration) -> None:
        """Apply a new configuration. Countdown changes apply to the next alert,
        smoothing changes to the next time monitoring is enabled."""
        await self._submit(self._handle_update_configuration, configuration)

    def submit_sample(self, sample: Sample) -> None:
        """Queue a sensor sample. Safe to call from any thread."""
        loop = self._loop
        if loop is None or self._queue is None or not self.is_running:
            self.samples_dropped += 1
            return

        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, (self._handle_sample, (sample,), None))
        except RuntimeError:
            # Loop already closed
            self.samples_dropped += 1

    def add_status_callback(self, callback: StatusCallback) -> None:
        """Register an observer for status changes (sync or async)."""
        self.status_callbacks.append(callback)

    def remove_status_callback(self, callback: StatusCallback) -> None:
        if callback in self.status_callbacks:
            self.status_callbacks.remove(callback)

    async def wait_until_idle(self) -> None:
        """Wait until queued events and any running escalation have been handled."""
        if self._queue is None:
            return

        while True:
            # Let call_soon_threadsafe deliveries land in the queue
            await asyncio.sleep(0)
            await self._queue.join()

            task = self._escalation_task
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)
                continue

            await asyncio.sleep(0)
            if self._queue.empty():
                return

    @property
    def is_sampling(self) -> bool:
        return self._sampling

    @property
    def active_session(self) -> Optional[AlertSession]:
        return self.sequencer.session

    def get_monitoring_stats(self) -> Dict[str, Any]:
        """Monitoring statistics for the status API."""
        gx, gy, gz = self.detector.gravity
        return {
            "is_running": self.is_running,
            "enabled": self.enabled,
            "sampling": self._sampling,
            "detector_state": self.detector.state.value,
            "sequencer_state": self.sequencer.state.value,
            "threshold": self.detector.threshold,
            "gravity": {"x": gx, "y": gy, "z": gz},
            "last_magnitude": self.detector.last_magnitude,
            "peak_magnitude": self.detector.peak_magnitude,
            "samples_processed": self.samples_processed,
            "samples_dropped": self.samples_dropped,
            "impacts_detected": self.impacts_detected,
            "sessions_started": self.sequencer.sessions_started,
            "cancellations_rejected": self.sequencer.cancellations_rejected,
            "escalations": self.escalation.escalation_count,
            "error_count": self.error_count,
            "uptime_seconds": (datetime.now() - self.started_at).total_seconds() if self.started_at else 0.0,
        }

    # ------------------------------------------------------------------
    # Event queue

    async def _submit(self, handler: Callable[..., Any], *args: Any) -> Any:
        if self._queue is None or not self.is_running:
            raise RuntimeError("Monitoring controller is not running")

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((handler, args, future))
        return await future

    def _post(self, handler: Callable[..., Any], *args: Any) -> None:
        """Queue an internal event from the loop thread."""
        if self._queue is None:
            return
        self._queue.put_nowait((handler, args, None))

    async def _consume(self) -> None:
        logger.debug("Monitor event loop started")

        while True:
            handler, args, future = await self._queue.get()
            try:
                result = handler(*args)
                if future is not None and not future.done():
                    future.set_result(result)
            except Exception as e:
                if future is not None and not future.done():
                    future.set_exception(e)
                else:
                    self.error_count += 1
                    logger.error("Error handling monitor event",
                                 handler=getattr(handler, "__name__", str(handler)),
                                 error=str(e))
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Handlers (consumer task only)

    def _handle_enable(self) -> bool:
        source = self.sensor_source
        if source is None or not source.available:
            logger.warning("Cannot enable detection: accelerometer not available")
            self._set_status(MonitorStatus.sensor_unavailable())
            return False

        if not self.permission_gate.has(Capability.ACCELEROMETER):
            self.permission_gate.request([Capability.ACCELEROMETER])
            self._set_status(MonitorStatus.missing_permission(Capability.ACCELEROMETER))
            return False

        if self.enabled and (self._sampling or self.sequencer.is_active):
            return True

        self.enabled = True
        self._rebuild_filter_if_needed()
        self.detector.reset()

        if self.sequencer.is_active:
            # Sampling resumes once the current alert concludes
            logger.info("Detection enabled during an active alert")
            return True

        if not self._resume_sampling():
            return False

        self._set_status(MonitorStatus.armed())
        logger.info("Detection enabled", threshold=self.detector.threshold)
        return True

    def _handle_disable(self) -> None:
        self.enabled = False
        self._pause_sampling()
        self.detector.disarm()

        if not self.sequencer.is_active:
            self._set_status(MonitorStatus.disabled())
        logger.info("Detection disabled", alert_active=self.sequencer.is_active)

    def _handle_sample(self, sample: Sample) -> None:
        if not self._sampling:
            self.samples_dropped += 1
            return

        self.samples_processed += 1
        event = self.detector.on_sample(sample)
        if event is None:
            return

        # Suppression precedes session creation
        self.impacts_detected += 1
        self.last_impact = event
        self._pause_sampling()
        logger.warning("Crash-like acceleration detected",
                       magnitude=round(event.magnitude, 2),
                       threshold=event.threshold)

        try:
            self._start_session(AlertTrigger.IMPACT)
        except CrashGuardError as e:
            logger.warning("Impact alert not started", error=str(e))

    def _handle_simulate(self) -> AlertSession:
        if self.sequencer.is_active:
            raise AlertAlreadyActiveError()

        self._pause_sampling()
        self.detector.suppress()
        return self._start_session(AlertTrigger.SIMULATED)

    def _handle_cancel(self) -> bool:
        if not self.sequencer.cancel():
            # Deadline passed before the expiry event was handled
            if self.sequencer.state == SequencerState.RESOLVING:
                self._begin_escalation()
            return False

        self._set_status(MonitorStatus.canceled())
        self._finish_session()
        return True

    def _handle_tick(self) -> None:
        if self.sequencer.state != SequencerState.PENDING:
            return

        seconds = self.sequencer.tick(self.clock.now())
        if self.sequencer.state == SequencerState.RESOLVING:
            self._begin_escalation()
        else:
            self._set_status(MonitorStatus.pending(seconds))

    def _handle_expiry(self) -> None:
        if self.sequencer.expire(self.clock.now()):
            self._begin_escalation()

    def _handle_escalation_result(self, outcome: EscalationOutcome) -> None:
        self._escalation_task = None

        if self.sequencer.state != SequencerState.RESOLVING:
            logger.warning("Escalation result ignored", state=self.sequencer.state.value)
            return

        self.sequencer.resolved(outcome)

        if outcome.missing_permission is not None:
            self._set_status(MonitorStatus.missing_permission(outcome.missing_permission))
        elif outcome.sent:
            self._set_status(MonitorStatus.sent(degraded=outcome.degraded))
        else:
            self._set_status(MonitorStatus.failed(outcome.reason or "unknown error"))

        self._finish_session()

    def _handle_set_contact(self, contact: str) -> None:
        self.configuration.contact = contact
        logger.info("Emergency contact updated", configured=self.configuration.has_contact)

    def _handle_update_configuration(self, configuration: MonitorConfiguration) -> None:
        self.configuration = configuration
        self.detector.threshold = configuration.detection.threshold
        self.sequencer.countdown_ms = configuration.countdown.duration_ms
        self.sequencer.tick_interval_ms = configuration.countdown.tick_interval_ms
        self.escalation.location_settings = configuration.location
        self.escalation.message_settings = configuration.message
        logger.info("Monitor configuration updated",
                    threshold=configuration.detection.threshold,
                    countdown_ms=configuration.countdown.duration_ms)

    def _handle_shutdown(self) -> None:
        self.enabled = False
        self._pause_sampling()
        self.detector.disarm()

        if self._escalation_task and not self._escalation_task.done():
            self._escalation_task.cancel()
        self._escalation_task = None

        if self.sequencer.session is not None:
            logger.warning("Shutting down with an alert in progress",
                           state=self.sequencer.state.value)
        self.sequencer.abort()
        self._set_status(MonitorStatus.disabled())

    # ------------------------------------------------------------------
    # Helpers

    def _start_session(self, trigger: AlertTrigger) -> AlertSession:
        try:
            session = self.sequencer.start(self.configuration.contact, trigger)
        except InvalidContactError:
            self._set_status(MonitorStatus.invalid_contact())
            self._restore_monitoring()
            raise

        seconds = self.sequencer.seconds_remaining(self.clock.now())
        self._set_status(MonitorStatus.pending(seconds or 0))
        return session

    def _begin_escalation(self) -> None:
        if self._escalation_task is not None:
            return

        session = self.sequencer.session
        self._set_status(MonitorStatus.sending())
        self._escalation_task = asyncio.create_task(
            self.escalation.escalate(session.contact, session.expired_at_ms)
        )
        self._escalation_task.add_done_callback(self._on_escalation_done)

    def _on_escalation_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            outcome = EscalationOutcome.failure(str(error) or type(error).__name__)
        else:
            outcome = task.result()
        self._post(self._handle_escalation_result, outcome)

    def _finish_session(self) -> None:
        session = self.sequencer.clear()
        if session is not None:
            self.recent_sessions.append(session)
        self._restore_monitoring()

    def _restore_monitoring(self) -> None:
        """Re-arm and resume sample delivery if detection is enabled."""
        if self.enabled:
            self._resume_sampling()
        else:
            self.detector.disarm()

    def _resume_sampling(self) -> bool:
        self.detector.arm()
        if self._sampling:
            return True

        try:
            self.sensor_source.start(self.submit_sample)
        except Exception as e:
            logger.error("Failed to start sensor source", error=str(e))
            self.enabled = False
            self.detector.disarm()
            self._set_status(MonitorStatus.sensor_unavailable())
            return False

        self._sampling = True
        return True

    def _pause_sampling(self) -> None:
        if not self._sampling:
            return

        self._sampling = False
        try:
            self.sensor_source.stop()
        except Exception as e:
            logger.error("Failed to stop sensor source", error=str(e))

    def _rebuild_filter_if_needed(self) -> None:
        alpha = self.configuration.detection.smoothing_alpha
        if self.detector.motion_filter.alpha != alpha:
            self.detector.motion_filter = MotionFilter(alpha=alpha)

    def _on_timer_tick(self, remaining_ms: float) -> None:
        self._post(self._handle_tick)

    def _on_timer_expiry(self) -> None:
        self._post(self._handle_expiry)

    def _set_status(self, status: MonitorStatus) -> None:
        self.status = status
        self.status_history.append(status)
        logger.debug("Status changed", status=str(status))

        for callback in list(self.status_callbacks):
            try:
                result = callback(status)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._callback_tasks.add(task)
                    task.add_done_callback(self._callback_tasks.discard)
            except Exception as e:
                logger.warning("Error in status callback", error=str(e))


__all__ = ["MonitoringController"]
