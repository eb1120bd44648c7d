# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SMS notification channel using Twilio.

The Twilio REST client is synchronous, so sends run in a worker thread
via asyncio.to_thread. Bodies longer than the SMS limit are truncated to
the first 157 characters plus "...".

Twilio errors about the number itself (invalid, not SMS-capable, opted
out) fail the delivery without retry.

Configuration comes from SMSSettings (TWILIO_* environment variables).
"""

import asyncio

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client as TwilioClient

from src.core.config.settings import SMSSettings
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)

SMS_MAX_LENGTH = 160
ELLIPSIS = "..."

# Invalid "To" number, recipient opted out, number cannot receive SMS
PERMANENT_TWILIO_CODES = frozenset({21211, 21610, 21614})


def truncate_sms(text: str, max_length: int = SMS_MAX_LENGTH) -> str:
    """Truncate text to fit one SMS.

    Text longer than max_length becomes its first max_length - 3
    characters followed by "...".
    """
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


class SMSChannel(BaseChannel):
    """SMS notification channel using the Twilio API."""

    def __init__(self, settings: SMSSettings, client: TwilioClient | None = None) -> None:
        """Initialize the SMS channel.

        Args:
            settings: Twilio configuration.
            client: Optional preconfigured Twilio client.
        """
        super().__init__()
        self.settings = settings
        self._client = client

    @property
    def channel_type(self) -> ChannelType:
        """Return the channel type."""
        return ChannelType.SMS

    @property
    def is_configured(self) -> bool:
        return self._client is not None or self.settings.is_configured

    def resolve_destination(
        self,
        recipient_id: str,
        email: str | None,
        phone: str | None,
    ) -> str | None:
        return phone or None

    def _get_client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(
                self.settings.account_sid,
                self.settings.auth_token.get_secret_value(),
            )
        return self._client

    async def send(self, destination: str, payload: NotificationPayload) -> ChannelResult:
        """Send an SMS through Twilio.

        Args:
            destination: Recipient phone number.
            payload: The notification content. short_message is used.

        Returns:
            ChannelResult with the Twilio message SID on success.
        """
        if not self.is_configured:
            return self.create_skipped_result("SMS channel not configured")

        body = truncate_sms(payload.short_message or payload.message, self.settings.max_length)

        try:
            message = await asyncio.to_thread(
                self._get_client().messages.create,
                body=body,
                from_=self.settings.from_number,
                to=destination,
            )
        except TwilioRestException as e:
            permanent = e.code in PERMANENT_TWILIO_CODES
            self.logger.error("Twilio rejected SMS to %s (code %s): %s", destination, e.code, e.msg)
            return self.create_failure_result(
                f"Twilio error {e.code}: {e.msg}",
                metadata={"recipient": destination, "status": e.status},
                retryable=not permanent,
            )
        except (TwilioException, OSError) as e:
            self.logger.error("SMS send failed to %s: %s", destination, e)
            return self.create_failure_result(
                f"Twilio error: {e}",
                metadata={"recipient": destination},
            )

        self.logger.info("SMS sent to %s: %s", destination, message.sid)
        return self.create_success_result(
            provider_id=message.sid,
            metadata={"recipient": destination, "length": len(body)},
        )
