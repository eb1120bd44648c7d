# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification system for risk escalation alerts.

This package delivers alerts through three channels:
- In-app notifications (stored record + Redis pub/sub push)
- Email notifications (SMTP)
- SMS notifications (Twilio)

Key Components:
- NotificationDispatcher: applies preferences and quiet hours, persists
  the notification and enqueues one delivery job per enabled channel
- DeliveryQueues: one retrying Dramatiq actor per channel
- Channels: EmailChannel, SMSChannel, InAppChannel

Usage:
    queues = DeliveryQueues.build(broker, channels, repository, settings.delivery)
    dispatcher = NotificationDispatcher(repository, queues)

    await dispatcher.create_notification(
        recipient_id="counselor-1",
        notification_type="Risk Level Change",
        priority="High",
        title="Risk Alert: Jane Doe",
        message="Risk level changed for Jane Doe (R-12) from Low to High.",
        requested_channels=["in_app", "email"],
    )

Configuration (environment variables):
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD: SMTP server
- SMTP_FROM_EMAIL, SMTP_FROM_NAME: Sender
- TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER: Twilio
- IN_APP_CHANNEL_PREFIX: Redis pub/sub channel prefix
- DELIVERY_*: Attempts and backoff per channel
"""

from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    EmailChannel,
    InAppChannel,
    NotificationPayload,
    SMSChannel,
)
from src.infrastructure.notifications.queues import (
    ChannelQueue,
    DeliveryQueues,
    RetryPolicy,
)
from src.infrastructure.notifications.service import (
    NotificationDispatcher,
    is_quiet_hours,
    shorten,
)

__all__ = [
    # Dispatcher
    "NotificationDispatcher",
    "is_quiet_hours",
    "shorten",
    # Queues
    "ChannelQueue",
    "DeliveryQueues",
    "RetryPolicy",
    # Channel types
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "NotificationPayload",
    # Channels
    "EmailChannel",
    "InAppChannel",
    "SMSChannel",
]
