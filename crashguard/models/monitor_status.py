"""MonitorStatus model: the status stream exposed to observers."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from .alert_session import Capability


class StatusKind(str, Enum):
    """Observable monitor status values."""

    DISABLED = "disabled"
    ARMED = "armed"
    PENDING = "pending"
    CANCELED = "canceled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    MISSING_PERMISSION = "missing_permission"
    SENSOR_UNAVAILABLE = "sensor_unavailable"
    INVALID_CONTACT = "invalid_contact"


_CAPABILITY_LABELS = {
    Capability.ACCELEROMETER: "accelerometer",
    Capability.LOCATION: "location",
    Capability.SMS: "SEND_SMS",
}


class MonitorStatus(BaseModel):
    """One entry of the status stream."""

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "json_encoders": {datetime: lambda v: v.isoformat()}
    }

    kind: StatusKind
    timestamp: datetime = Field(default_factory=datetime.now)
    seconds_remaining: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = None
    capability: Optional[Capability] = None

    @classmethod
    def disabled(cls) -> "MonitorStatus":
        return cls(kind=StatusKind.DISABLED)

    @classmethod
    def armed(cls) -> "MonitorStatus":
        return cls(kind=StatusKind.ARMED)

    @classmethod
    def pending(cls, seconds_remaining: int) -> "MonitorStatus":
        return cls(kind=StatusKind.PENDING, seconds_remaining=seconds_remaining)

    @classmethod
    def canceled(cls) -> "MonitorStatus":
        return cls(kind=StatusKind.CANCELED)

    @classmethod
    def sending(cls) -> "MonitorStatus":
        return cls(kind=StatusKind.SENDING)

    @classmethod
    def sent(cls, degraded: bool = False) -> "MonitorStatus":
        return cls(
            kind=StatusKind.SENT,
            reason="location unavailable" if degraded else None
        )

    @classmethod
    def failed(cls, reason: str) -> "MonitorStatus":
        return cls(kind=StatusKind.FAILED, reason=reason)

    @classmethod
    def missing_permission(cls, capability: Capability) -> "MonitorStatus":
        return cls(kind=StatusKind.MISSING_PERMISSION, capability=capability)

    @classmethod
    def sensor_unavailable(cls) -> "MonitorStatus":
        return cls(kind=StatusKind.SENSOR_UNAVAILABLE)

    @classmethod
    def invalid_contact(cls) -> "MonitorStatus":
        return cls(
            kind=StatusKind.INVALID_CONTACT,
            reason="Please enter an emergency contact number first."
        )

    @property
    def is_alerting(self) -> bool:
        """A countdown or send is in progress."""
        return self.kind in (StatusKind.PENDING, StatusKind.SENDING)

    def export_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode='json')
        data["text"] = str(self)
        return data

    def __str__(self) -> str:
        """Status line as shown to the user."""
        if self.kind == StatusKind.DISABLED:
            text = "detection disabled"
        elif self.kind == StatusKind.ARMED:
            text = "detection enabled"
        elif self.kind == StatusKind.PENDING:
            text = f"alert pending ({self.seconds_remaining} s)"
        elif self.kind == StatusKind.CANCELED:
            text = "alert canceled"
        elif self.kind == StatusKind.SENDING:
            text = "sending SMS..."
        elif self.kind == StatusKind.SENT:
            text = "SMS sent" if not self.reason else f"SMS sent ({self.reason})"
        elif self.kind == StatusKind.FAILED:
            text = f"SMS failed: {self.reason}"
        elif self.kind == StatusKind.MISSING_PERMISSION:
            label = _CAPABILITY_LABELS.get(self.capability, str(self.capability))
            text = f"missing {label} permission"
        elif self.kind == StatusKind.SENSOR_UNAVAILABLE:
            text = "accelerometer not available"
        else:
            text = self.reason or "invalid emergency contact"
        return f"Status: {text}"
