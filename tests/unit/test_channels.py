# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for notification channel transports."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest
from twilio.base.exceptions import TwilioException, TwilioRestException

from src.core.config.settings import EmailSettings, InAppSettings, SMSSettings
from src.core.exceptions import ConfigurationError
from src.infrastructure.cache.redis_client import RedisError
from src.infrastructure.notifications.channels import (
    ChannelType,
    DeliveryStatus,
    EmailChannel,
    InAppChannel,
    NotificationPayload,
    SMSChannel,
    truncate_sms,
)
from src.infrastructure.notifications.channels.email import escape


@pytest.fixture
def payload() -> NotificationPayload:
    """A critical risk alert payload."""
    return NotificationPayload(
        notification_id="n-1",
        notification_type="Risk Level Change",
        title="Risk Alert: Asha Rao",
        message="Risk level changed for Asha Rao (R-12) from Medium to Critical. Current risk score: 84.",
        short_message="Risk level changed for Asha Rao (R-12) from Medium to Critical.",
        priority="Critical",
        recipient_id="counselor-1",
        related_student_id="stu-12",
        action_url="/students/stu-12",
    )


@pytest.fixture
def email_settings() -> EmailSettings:
    """SMTP settings with a host and user."""
    return EmailSettings(host="smtp.example.com", user="mailer", password="pw")  # type: ignore[arg-type]


class TestTruncateSMS:
    """Test SMS truncation."""

    def test_short_text_unchanged(self) -> None:
        """Test that text within the limit is kept."""
        assert truncate_sms("x" * 160) == "x" * 160

    def test_long_text_truncated(self) -> None:
        """Test 157 characters plus an ellipsis."""
        result = truncate_sms("y" * 200)
        assert len(result) == 160
        assert result == "y" * 157 + "..."


class TestEmailChannel:
    """Test the SMTP transport."""

    def test_escape(self) -> None:
        """Test HTML escaping."""
        assert escape('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"

    def test_configuration(self, email_settings: EmailSettings) -> None:
        """Test is_configured and destination resolution."""
        channel = EmailChannel(email_settings)
        assert channel.channel_type == ChannelType.EMAIL
        assert channel.is_configured
        assert channel.resolve_destination("u1", "a@b.c", "+1") == "a@b.c"
        assert channel.resolve_destination("u1", None, "+1") is None

    def test_unconfigured_raises_configuration_error(self) -> None:
        """Test ensure_configured without SMTP credentials."""
        channel = EmailChannel(EmailSettings(host="", user=""))
        with pytest.raises(ConfigurationError):
            channel.ensure_configured()

    @pytest.mark.asyncio
    async def test_send_success(self, email_settings: EmailSettings, payload: NotificationPayload) -> None:
        """Test a successful SMTP send."""
        channel = EmailChannel(email_settings)
        send = AsyncMock(return_value=({}, "OK"))

        with patch("src.infrastructure.notifications.channels.email.aiosmtplib.send", send):
            result = await channel.send("counselor@school.example", payload)

        assert result.success
        assert result.provider_id
        message = send.await_args.args[0]
        assert message["To"] == "counselor@school.example"
        assert message["Subject"] == "Risk Alert: Asha Rao"
        assert message["X-Priority"] == "1"
        assert send.await_args.kwargs["hostname"] == "smtp.example.com"

    @pytest.mark.asyncio
    async def test_send_failure(self, email_settings: EmailSettings, payload: NotificationPayload) -> None:
        """Test that SMTP errors become failed results."""
        channel = EmailChannel(email_settings)
        send = AsyncMock(side_effect=aiosmtplib.SMTPException("relay denied"))

        with patch("src.infrastructure.notifications.channels.email.aiosmtplib.send", send):
            result = await channel.send("counselor@school.example", payload)

        assert result.status == DeliveryStatus.FAILED
        assert "relay denied" in result.error_message
        assert result.retryable

    @pytest.mark.asyncio
    async def test_mailbox_unavailable_is_not_retried(
        self, email_settings: EmailSettings, payload: NotificationPayload
    ) -> None:
        """Test that a permanent 550 reply fails without retry."""
        channel = EmailChannel(email_settings)
        send = AsyncMock(side_effect=aiosmtplib.SMTPResponseException(550, "mailbox unavailable"))

        with patch("src.infrastructure.notifications.channels.email.aiosmtplib.send", send):
            result = await channel.send("gone@school.example", payload)

        assert result.status == DeliveryStatus.FAILED
        assert not result.retryable
        assert not result.should_retry

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(
        self, email_settings: EmailSettings, payload: NotificationPayload
    ) -> None:
        """Test that socket errors stay retryable."""
        channel = EmailChannel(email_settings)
        send = AsyncMock(side_effect=ConnectionRefusedError("refused"))

        with patch("src.infrastructure.notifications.channels.email.aiosmtplib.send", send):
            result = await channel.send("counselor@school.example", payload)

        assert result.should_retry

    def test_relative_action_url_is_made_absolute(self, payload: NotificationPayload) -> None:
        """Test that links are joined to the web app URL."""
        settings = EmailSettings(
            host="smtp.example.com",
            user="mailer",
            link_base_url="https://sentinel.school.example",
        )
        channel = EmailChannel(settings)

        message = channel.build_message("counselor@school.example", payload)

        plain = message.get_body(preferencelist=("plain",)).get_content()
        html = message.get_body(preferencelist=("html",)).get_content()
        assert "https://sentinel.school.example/students/stu-12" in plain
        assert 'href="https://sentinel.school.example/students/stu-12"' in html
        assert message["Importance"] == "high"

    @pytest.mark.asyncio
    async def test_send_unconfigured_is_skipped(self, payload: NotificationPayload) -> None:
        """Test that an unconfigured transport skips."""
        channel = EmailChannel(EmailSettings(host="", user=""))

        result = await channel.send("counselor@school.example", payload)

        assert result.status == DeliveryStatus.SKIPPED


class TestSMSChannel:
    """Test the Twilio transport."""

    @pytest.mark.asyncio
    async def test_send_uses_short_message(self, payload: NotificationPayload) -> None:
        """Test the Twilio call and the returned SID."""
        client = MagicMock()
        client.messages.create.return_value = MagicMock(sid="SM123")
        channel = SMSChannel(SMSSettings(), client=client)

        result = await channel.send("+15550001111", payload)

        assert result.success
        assert result.provider_id == "SM123"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["to"] == "+15550001111"
        assert kwargs["body"] == payload.short_message

    @pytest.mark.asyncio
    async def test_long_body_truncated(self, payload: NotificationPayload) -> None:
        """Test that bodies over 160 characters are truncated."""
        client = MagicMock()
        client.messages.create.return_value = MagicMock(sid="SM124")
        channel = SMSChannel(SMSSettings(), client=client)
        payload.short_message = "z" * 300

        await channel.send("+15550001111", payload)

        body = client.messages.create.call_args.kwargs["body"]
        assert body == "z" * 157 + "..."

    @pytest.mark.asyncio
    async def test_twilio_error(self, payload: NotificationPayload) -> None:
        """Test that Twilio errors become failed results."""
        client = MagicMock()
        client.messages.create.side_effect = TwilioException("invalid number")
        channel = SMSChannel(SMSSettings(), client=client)

        result = await channel.send("+1", payload)

        assert result.status == DeliveryStatus.FAILED
        assert "invalid number" in result.error_message
        assert result.retryable

    @pytest.mark.asyncio
    async def test_invalid_number_is_not_retried(self, payload: NotificationPayload) -> None:
        """Test that Twilio number errors fail without retry."""
        client = MagicMock()
        client.messages.create.side_effect = TwilioRestException(
            400, "/Messages.json", msg="The 'To' number is not a valid phone number.", code=21211
        )
        channel = SMSChannel(SMSSettings(), client=client)

        result = await channel.send("+1", payload)

        assert not result.retryable
        assert "21211" in result.error_message
        assert result.metadata["status"] == 400

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, payload: NotificationPayload) -> None:
        """Test that other Twilio API errors stay retryable."""
        client = MagicMock()
        client.messages.create.side_effect = TwilioRestException(429, "/Messages.json", msg="Too Many Requests", code=20429)
        channel = SMSChannel(SMSSettings(), client=client)

        result = await channel.send("+15550001111", payload)

        assert result.should_retry

    def test_destination_is_phone(self) -> None:
        """Test destination resolution."""
        channel = SMSChannel(SMSSettings(), client=MagicMock())
        assert channel.resolve_destination("u1", "a@b.c", "+1555") == "+1555"
        assert channel.resolve_destination("u1", "a@b.c", None) is None


class TestInAppChannel:
    """Test the Redis pub/sub transport."""

    @pytest.mark.asyncio
    async def test_pushes_to_recipient_channel(self, payload: NotificationPayload) -> None:
        """Test the pub/sub channel name, body and backlog settings."""
        redis = AsyncMock()
        redis.push.return_value = 2
        channel = InAppChannel(InAppSettings(backlog_size=10, backlog_ttl_seconds=60), redis)

        result = await channel.send("counselor-1", payload)

        assert result.success
        assert result.metadata["receivers"] == 2
        name, body = redis.push.await_args.args
        assert name == "notifications:counselor-1"
        assert json.loads(body)["notification_id"] == "n-1"
        assert redis.push.await_args.kwargs == {"backlog_size": 10, "backlog_ttl": 60}

    @pytest.mark.asyncio
    async def test_no_subscribers_still_sent(self, payload: NotificationPayload) -> None:
        """Test that an offline recipient still counts as delivered."""
        redis = AsyncMock()
        redis.push.return_value = 0
        channel = InAppChannel(InAppSettings(), redis)

        result = await channel.send("counselor-1", payload)

        assert result.status == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_redis_error(self, payload: NotificationPayload) -> None:
        """Test that Redis errors become failed results."""
        redis = AsyncMock()
        redis.push.side_effect = RedisError("Failed to push")
        channel = InAppChannel(InAppSettings(), redis)

        result = await channel.send("counselor-1", payload)

        assert result.status == DeliveryStatus.FAILED

    def test_disabled_without_redis(self) -> None:
        """Test that a missing Redis client disables the channel."""
        assert not InAppChannel(InAppSettings(), None).is_configured
        assert not InAppChannel(InAppSettings(enabled=False), AsyncMock()).is_configured
