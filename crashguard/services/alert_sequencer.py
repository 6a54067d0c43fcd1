"""AlertSequencer: countdown and confirmation state machine for one alert session."""

import math
from typing import Callable, Optional

import structlog

from ..models import (
    AlertSession,
    AlertTrigger,
    EscalationOutcome,
    SequencerState,
    SessionStatus,
)
from ..errors import AlertAlreadyActiveError, AlertSequencerError, InvalidContactError
from ..lib.capabilities.interfaces import Clock, Timer, TimerHandle


logger = structlog.get_logger(__name__)


_STATE_BY_STATUS = {
    SessionStatus.PENDING: SequencerState.PENDING,
    SessionStatus.CANCELED: SequencerState.CANCELED,
    SessionStatus.EXPIRED: SequencerState.RESOLVING,
    SessionStatus.COMPLETED: SequencerState.COMPLETED,
    SessionStatus.FAILED: SequencerState.FAILED,
}


class AlertSequencer:
    """
    Owns at most one AlertSession and its countdown timer.

    no_session --start--> pending --cancel--> canceled
                          pending --deadline--> resolving --resolved--> completed | failed
    canceled | completed | failed --clear--> no_session

    Cancellation is only honoured while pending; once resolving begins it is
    rejected, never queued.
    """

    def __init__(
        self,
        clock: Clock,
        timer: Timer,
        countdown_ms: int = 30000,
        tick_interval_ms: int = 1000,
        on_tick: Optional[Callable[[float], None]] = None,
        on_expiry: Optional[Callable[[], None]] = None
    ):
        """
        Initialize the sequencer.

        Args:
            clock: Monotonic millisecond clock
            timer: Countdown scheduler
            countdown_ms: Time between start and automatic escalation
            tick_interval_ms: Countdown tick period
            on_tick: Timer tick callback (the controller enqueues a tick)
            on_expiry: Timer expiry callback (the controller enqueues an expiry)
        """
        self.clock = clock
        self.timer = timer
        self.countdown_ms = countdown_ms
        self.tick_interval_ms = tick_interval_ms
        self.on_tick = on_tick or (lambda remaining_ms: None)
        self.on_expiry = on_expiry or (lambda: None)

        self.session: Optional[AlertSession] = None
        self._timer_handle: Optional[TimerHandle] = None

        self.sessions_started = 0
        self.cancellations_rejected = 0

    @property
    def state(self) -> SequencerState:
        if self.session is None:
            return SequencerState.NO_SESSION
        return _STATE_BY_STATUS[self.session.status]

    @property
    def is_active(self) -> bool:
        """Pending or resolving."""
        return self.session is not None and self.session.is_active

    def start(self, contact: str, trigger: AlertTrigger = AlertTrigger.IMPACT) -> AlertSession:
        """
        Open a cancellable countdown for the given contact.

        Raises:
            InvalidContactError: contact is empty; nothing is scheduled
            AlertAlreadyActiveError: a session is pending or resolving
        """
        contact = (contact or "").strip()
        if not contact:
            logger.warning("Alert not started: emergency contact is empty", trigger=trigger.value)
            raise InvalidContactError("Please enter an emergency contact number first.")

        if self.is_active:
            logger.info("Alert already active, start ignored", state=self.state.value)
            raise AlertAlreadyActiveError()

        if self.session is not None:
            # Terminal session nobody cleared; the new one replaces it.
            self.clear()

        now = self.clock.now()
        self.session = AlertSession(
            contact=contact,
            trigger=trigger,
            start_ms=now,
            deadline_ms=now + self.countdown_ms
        )
        self._timer_handle = self.timer.schedule(
            self.countdown_ms,
            self.tick_interval_ms,
            self.on_tick,
            self.on_expiry
        )
        self.sessions_started += 1

        logger.info("Alert pending",
                    trigger=trigger.value,
                    countdown_ms=self.countdown_ms)
        return self.session

    def cancel(self) -> bool:
        """
        Cancel the countdown.

        A cancel that arrives once the deadline has passed performs the
        automatic transition to resolving instead and is rejected.

        Returns:
            True if the session was pending and is now canceled, False if rejected
        """
        if self.session is not None and self.session.status == SessionStatus.PENDING:
            now = self.clock.now()
            if now >= self.session.deadline_ms:
                self.expire(now)

        if self.session is None or self.session.status != SessionStatus.PENDING:
            self.cancellations_rejected += 1
            logger.info("Cancellation rejected", state=self.state.value)
            return False

        self._cancel_timer()
        self.session.status = SessionStatus.CANCELED
        logger.info("Alert canceled by user")
        return True

    def tick(self, now: float) -> int:
        """
        Countdown tick.

        Returns:
            Whole seconds remaining while pending; 0 once the deadline has been
            reached (the session then moves to resolving)
        """
        if self.session is None or self.session.status != SessionStatus.PENDING:
            return 0

        if now >= self.session.deadline_ms:
            self.expire(now)
            return 0

        return int(math.ceil(self.session.remaining_ms(now) / 1000.0))

    def expire(self, now: float) -> bool:
        """
        Deadline reached: pending -> resolving.

        Returns:
            True only for the call that performed the transition
        """
        if self.session is None or self.session.status != SessionStatus.PENDING:
            return False

        self._cancel_timer()
        self.session.status = SessionStatus.EXPIRED
        self.session.expired_at_ms = now
        logger.info("Countdown expired, escalating")
        return True

    def resolved(self, outcome: EscalationOutcome) -> SequencerState:
        """Record the escalation result: resolving -> completed | failed."""
        if self.session is None or self.session.status != SessionStatus.EXPIRED:
            raise AlertSequencerError(f"Cannot resolve from state {self.state.value}")

        self.session.outcome = outcome
        if outcome.sent:
            self.session.status = SessionStatus.COMPLETED
            logger.info("Alert completed", degraded=outcome.degraded)
        else:
            self.session.failure_reason = outcome.reason
            self.session.status = SessionStatus.FAILED
            logger.warning("Alert failed", reason=outcome.reason)

        return self.state

    def clear(self) -> Optional[AlertSession]:
        """
        Drop a finished session: canceled | completed | failed -> no_session.

        Returns:
            The cleared session, or None if there was none
        """
        if self.session is None:
            return None

        if not self.session.is_terminal:
            raise AlertSequencerError(f"Cannot clear an active session ({self.state.value})")

        self._cancel_timer()
        session, self.session = self.session, None
        logger.debug("Alert session cleared", status=session.status.value)
        return session

    def abort(self) -> None:
        """Cancel any countdown and drop the session, whatever its state (shutdown)."""
        self._cancel_timer()
        self.session = None

    def seconds_remaining(self, now: float) -> Optional[int]:
        if self.session is None or self.session.status != SessionStatus.PENDING:
            return None
        return int(math.ceil(self.session.remaining_ms(now) / 1000.0))

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None


__all__ = ["AlertSequencer"]
