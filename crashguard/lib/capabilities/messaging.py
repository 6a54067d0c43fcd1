"""
Text message senders.

TwilioMessageSender delivers SMS through the Twilio REST API; credentials
come from TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN. LogMessageSender only logs
and records messages, for demo mode and tests.
"""

import asyncio
import logging
import os
from typing import List, Optional

from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from ...models import AlertMessage
from ...errors import SendFailureError

logger = logging.getLogger(__name__)


class LogMessageSender:
    """Records messages instead of sending them."""

    def __init__(self, fail_with: Optional[str] = None):
        """
        Args:
            fail_with: If set, every send raises SendFailureError with this reason
        """
        self.fail_with = fail_with
        self.sent: List[AlertMessage] = []
        self.attempts = 0

    async def send(self, recipient: str, body: str) -> None:
        self.attempts += 1
        if self.fail_with:
            raise SendFailureError(self.fail_with)

        message = AlertMessage(recipient=recipient, body=body)
        self.sent.append(message)
        logger.warning(f"SMS to {recipient}: {body}")


class TwilioMessageSender:
    """SMS delivery via Twilio."""

    def __init__(
        self,
        from_number: str,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        client: Optional[Client] = None
    ):
        """
        Initialize Twilio sender.

        Args:
            from_number: Twilio number messages are sent from
            account_sid: Account SID (defaults to TWILIO_ACCOUNT_SID)
            auth_token: Auth token (defaults to TWILIO_AUTH_TOKEN)
            client: Pre-built client
        """
        if not from_number:
            raise ValueError("from_number is required for Twilio delivery")

        self.from_number = from_number
        self._client = client

        if self._client is None:
            sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
            token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
            if sid and token:
                self._client = Client(sid, token)
            else:
                logger.warning("Twilio credentials not set - SMS delivery will fail")

        self.last_sid: Optional[str] = None

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def send(self, recipient: str, body: str) -> None:
        """Send one SMS. Raises SendFailureError; never retries."""
        if self._client is None:
            raise SendFailureError("Twilio client not configured")

        def create_message():
            return self._client.messages.create(
                to=recipient,
                from_=self.from_number,
                body=body
            )

        loop = asyncio.get_running_loop()
        try:
            message = await loop.run_in_executor(None, create_message)
        except TwilioRestException as e:
            raise SendFailureError(e.msg or str(e))
        except Exception as e:
            raise SendFailureError(str(e))

        self.last_sid = getattr(message, "sid", None)
        logger.info(f"SMS queued with Twilio (sid={self.last_sid})")


__all__ = ['LogMessageSender', 'TwilioMessageSender']
