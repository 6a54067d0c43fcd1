"""AlertSession and escalation data models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator, computed_field


class SessionStatus(str, Enum):
    """Status of a single alert session."""

    PENDING = "pending"
    CANCELED = "canceled"
    EXPIRED = "expired"
    COMPLETED = "completed"
    FAILED = "failed"


class SequencerState(str, Enum):
    """Externally visible state of the alert sequencer."""

    NO_SESSION = "no_session"
    PENDING = "pending"
    CANCELED = "canceled"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertTrigger(str, Enum):
    """What started an alert session."""

    IMPACT = "impact"
    SIMULATED = "simulated"


class Capability(str, Enum):
    """Host capabilities guarded by permissions."""

    ACCELEROMETER = "accelerometer"
    LOCATION = "location"
    SMS = "sms"


class LocationSource(str, Enum):
    """Where a location fix came from."""

    LAST_KNOWN = "last_known"
    FRESH = "fresh"


class LocationFix(BaseModel):
    """Resolved device location."""

    model_config = {
        "frozen": True,
        "extra": "forbid"
    }

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    source: LocationSource = Field(default=LocationSource.LAST_KNOWN)

    def __str__(self) -> str:
        return f"{self.latitude:.6f},{self.longitude:.6f}"


class AlertMessage(BaseModel):
    """Composed emergency message. Immutable once built."""

    model_config = {
        "frozen": True,
        "extra": "forbid"
    }

    recipient: str = Field(min_length=1)
    body: str = Field(min_length=1, max_length=1600)

    @field_validator('recipient')
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        """Strip whitespace around the recipient."""
        v = v.strip()
        if not v:
            raise ValueError("recipient cannot be blank")
        return v


class EscalationOutcome(BaseModel):
    """Result of one escalation attempt."""

    model_config = {
        "frozen": True
    }

    sent: bool
    message: Optional[AlertMessage] = None
    location: Optional[LocationFix] = None
    reason: Optional[str] = None
    missing_permission: Optional[Capability] = None
    finished_at: datetime = Field(default_factory=datetime.now)

    @computed_field
    @property
    def degraded(self) -> bool:
        """Sent, but without a resolved location."""
        return self.sent and self.location is None

    @classmethod
    def delivered(cls, message: AlertMessage, location: Optional[LocationFix]) -> "EscalationOutcome":
        return cls(sent=True, message=message, location=location)

    @classmethod
    def failure(
        cls,
        reason: str,
        message: Optional[AlertMessage] = None,
        missing_permission: Optional[Capability] = None
    ) -> "EscalationOutcome":
        return cls(
            sent=False,
            message=message,
            reason=reason,
            missing_permission=missing_permission
        )


class AlertSession(BaseModel):
    """The single active alert countdown and its result."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "json_encoders": {datetime: lambda v: v.isoformat()}
    }

    contact: str = Field(min_length=1, description="Emergency contact the alert goes to")
    trigger: AlertTrigger = Field(default=AlertTrigger.IMPACT)
    started_at: datetime = Field(default_factory=datetime.now)
    start_ms: float = Field(ge=0.0, description="Monotonic start time in ms")
    deadline_ms: float = Field(ge=0.0, description="Monotonic deadline in ms")
    status: SessionStatus = Field(default=SessionStatus.PENDING)
    expired_at_ms: Optional[float] = None
    outcome: Optional[EscalationOutcome] = None
    failure_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Pending or resolving; a new session cannot start."""
        return self.status in (SessionStatus.PENDING, SessionStatus.EXPIRED)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            SessionStatus.CANCELED,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED
        )

    def remaining_ms(self, now_ms: float) -> float:
        return max(0.0, self.deadline_ms - now_ms)

    def __str__(self) -> str:
        return f"AlertSession({self.trigger.value} -> {self.contact}: {self.status.value})"
