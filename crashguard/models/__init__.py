"""Data models for the crash monitor."""

from .motion_sample import Sample, ImpactEvent, DetectorState
from .alert_session import (
    AlertSession,
    AlertMessage,
    AlertTrigger,
    Capability,
    EscalationOutcome,
    LocationFix,
    LocationSource,
    SequencerState,
    SessionStatus,
)
from .monitor_status import MonitorStatus, StatusKind
from .monitor_configuration import (
    MonitorConfiguration,
    DetectionSettings,
    CountdownSettings,
    LocationSettings,
    MessageSettings,
    MessagingSettings,
    MessagingProvider,
    SensorSettings,
    SensorSourceKind,
)

__all__ = [
    "Sample",
    "ImpactEvent",
    "DetectorState",
    "AlertSession",
    "AlertMessage",
    "AlertTrigger",
    "Capability",
    "EscalationOutcome",
    "LocationFix",
    "LocationSource",
    "SequencerState",
    "SessionStatus",
    "MonitorStatus",
    "StatusKind",
    "MonitorConfiguration",
    "DetectionSettings",
    "CountdownSettings",
    "LocationSettings",
    "MessageSettings",
    "MessagingSettings",
    "MessagingProvider",
    "SensorSettings",
    "SensorSourceKind",
]
