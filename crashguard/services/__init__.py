"""Core services for the crash monitoring system."""

from .alert_sequencer import AlertSequencer
from .escalation_service import EscalationService, compose_message, format_maps_link
from .monitoring_controller import MonitoringController

__all__ = [
    "AlertSequencer",
    "EscalationService",
    "MonitoringController",
    "compose_message",
    "format_maps_link"
]
