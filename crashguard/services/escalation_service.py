"""EscalationService: resolve a location and dispatch the emergency message."""

import asyncio
from typing import Optional

import structlog

from ..models import (
    AlertMessage,
    Capability,
    EscalationOutcome,
    LocationFix,
    LocationSettings,
    MessageSettings,
)
from ..errors import PermissionMissingError, SendFailureError
from ..lib.capabilities.interfaces import LocationProvider, MessageSender, PermissionGate


logger = structlog.get_logger(__name__)


def format_maps_link(fix: LocationFix, url_template: str) -> str:
    """Render the maps URL for a fix."""
    return url_template.format(latitude=fix.latitude, longitude=fix.longitude)


def compose_message(
    contact: str,
    fix: Optional[LocationFix],
    settings: Optional[MessageSettings] = None
) -> AlertMessage:
    """Build the emergency message, with or without a location link."""
    settings = settings or MessageSettings()

    if fix is None:
        body = settings.unavailable_text
    else:
        body = settings.template.format(link=format_maps_link(fix, settings.maps_url_template))

    return AlertMessage(recipient=contact, body=body)


class EscalationService:
    """Location fast path, single fallback, compose, exactly one send."""

    def __init__(
        self,
        location_provider: LocationProvider,
        message_sender: MessageSender,
        permission_gate: PermissionGate,
        location_settings: Optional[LocationSettings] = None,
        message_settings: Optional[MessageSettings] = None
    ):
        self.location_provider = location_provider
        self.message_sender = message_sender
        self.permission_gate = permission_gate
        self.location_settings = location_settings or LocationSettings()
        self.message_settings = message_settings or MessageSettings()

        self.escalation_count = 0
        self.last_outcome: Optional[EscalationOutcome] = None

    async def escalate(self, contact: str, deadline_reached_at: Optional[float] = None) -> EscalationOutcome:
        """
        Run one escalation. Never raises; failures come back as the outcome.

        Args:
            contact: Recipient of the emergency message
            deadline_reached_at: Monotonic ms at which the countdown expired

        Returns:
            sent outcome (possibly without location) or failed outcome
        """
        self.escalation_count += 1
        log = logger.bind(escalation=self.escalation_count, deadline_reached_at=deadline_reached_at)

        try:
            self._require(Capability.LOCATION)
        except PermissionMissingError as e:
            log.warning("Escalation aborted", error=str(e))
            return self._finish(EscalationOutcome.failure(str(e), missing_permission=e.capability))

        fix = await self.resolve_location()
        message = compose_message(contact, fix, self.message_settings)

        try:
            self._require(Capability.SMS)
        except PermissionMissingError as e:
            log.warning("Escalation aborted", error=str(e))
            return self._finish(EscalationOutcome.failure(
                str(e),
                message=message,
                missing_permission=e.capability
            ))

        try:
            await self.message_sender.send(message.recipient, message.body)
        except SendFailureError as e:
            log.error("SMS failed", reason=e.reason)
            return self._finish(EscalationOutcome.failure(e.reason, message=message))
        except Exception as e:
            log.error("SMS failed", error=str(e))
            return self._finish(EscalationOutcome.failure(str(e) or type(e).__name__, message=message))

        log.info("SMS sent", has_location=fix is not None)
        return self._finish(EscalationOutcome.delivered(message, fix))

    async def resolve_location(self) -> Optional[LocationFix]:
        """Last known fix, else one fresh request, else None."""
        try:
            fix = await self.location_provider.get_last_known()
        except Exception as e:
            logger.warning("Last known location failed", error=str(e))
            fix = None

        if fix is not None:
            return fix

        # fallback if no last location
        try:
            fix = await asyncio.wait_for(
                self.location_provider.get_fresh_fix(self.location_settings.priority),
                timeout=self.location_settings.fresh_fix_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("Fresh location request timed out",
                           timeout_s=self.location_settings.fresh_fix_timeout_s)
            return None
        except Exception as e:
            logger.warning("Fresh location request failed", error=str(e))
            return None

        if fix is None:
            logger.warning("Location unavailable")
        return fix

    def _require(self, capability: Capability) -> None:
        """Raise PermissionMissingError after asking the host for what is missing."""
        if self.permission_gate.has(capability):
            return

        try:
            self.permission_gate.request([Capability.LOCATION, Capability.SMS])
        except Exception as e:
            logger.error("Permission request failed", error=str(e))
        raise PermissionMissingError(capability)

    def _finish(self, outcome: EscalationOutcome) -> EscalationOutcome:
        self.last_outcome = outcome
        return outcome


__all__ = ["EscalationService", "compose_message", "format_maps_link"]
