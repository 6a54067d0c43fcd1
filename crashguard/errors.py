"""Error taxonomy for the alert pipeline.

None of these are fatal to the process: the monitoring controller turns each
of them into a status update and returns to a monitorable state.
"""

from typing import Optional

from .models import Capability


class CrashGuardError(Exception):
    """Base class for crash monitor errors."""
    pass


class InvalidContactError(CrashGuardError):
    """Emergency contact is empty; no session is started."""

    def __init__(self, message: str = "Emergency contact is empty"):
        super().__init__(message)


class AlertAlreadyActiveError(CrashGuardError):
    """An alert session is already pending or resolving."""

    def __init__(self, message: str = "An alert is already active"):
        super().__init__(message)


class AlertSequencerError(CrashGuardError):
    """Requested transition is not valid in the current state."""
    pass


class PermissionMissingError(CrashGuardError):
    """A required host permission has not been granted."""

    def __init__(self, capability: Capability, message: Optional[str] = None):
        self.capability = capability
        super().__init__(message or f"Missing permission: {capability.value}")


class LocationUnavailableError(CrashGuardError):
    """No location could be obtained from a provider."""
    pass


class SendFailureError(CrashGuardError):
    """Text message dispatch failed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


__all__ = [
    "CrashGuardError",
    "InvalidContactError",
    "AlertAlreadyActiveError",
    "AlertSequencerError",
    "PermissionMissingError",
    "LocationUnavailableError",
    "SendFailureError",
]
