# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-app notification channel.

The notification record itself is already stored by the dispatcher; this
channel pushes it to connected clients over Redis pub/sub on
"{prefix}:{recipient_id}" and keeps it in that channel's recent backlog.
A push that reaches no subscriber still counts as sent, since the record
is visible in the notification center.
"""

import json

from src.core.config.settings import InAppSettings
from src.infrastructure.cache.redis_client import RedisClient, RedisError
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)


class InAppChannel(BaseChannel):
    """In-app push through Redis pub/sub."""

    def __init__(self, settings: InAppSettings, redis: RedisClient | None) -> None:
        """Initialize the in-app channel.

        Args:
            settings: In-app channel configuration.
            redis: Redis client used to publish. None disables the channel.
        """
        super().__init__()
        self.settings = settings
        self._redis = redis

    @property
    def channel_type(self) -> ChannelType:
        """Return the channel type."""
        return ChannelType.IN_APP

    @property
    def is_configured(self) -> bool:
        return self.settings.enabled and self._redis is not None

    def resolve_destination(
        self,
        recipient_id: str,
        email: str | None,
        phone: str | None,
    ) -> str | None:
        return recipient_id

    def channel_name(self, recipient_id: str) -> str:
        return f"{self.settings.channel_prefix}:{recipient_id}"

    async def send(self, destination: str, payload: NotificationPayload) -> ChannelResult:
        """Push the notification to the recipient's channel and backlog.

        Args:
            destination: Recipient user id.
            payload: The notification content.

        Returns:
            ChannelResult with the notification id as provider id.
        """
        if not self.is_configured:
            return self.create_skipped_result("In-app channel not configured")

        channel = self.channel_name(destination)
        try:
            receivers = await self._redis.push(
                channel,
                json.dumps(payload.to_dict()),
                backlog_size=self.settings.backlog_size,
                backlog_ttl=self.settings.backlog_ttl_seconds,
            )
        except RedisError as e:
            self.logger.error("Failed to push in-app notification to %s: %s", channel, e)
            return self.create_failure_result(f"Redis error: {e}")

        self.logger.debug(
            "Pushed notification %s to %s (%d receivers)",
            payload.notification_id,
            channel,
            receivers,
        )
        return self.create_success_result(
            provider_id=payload.notification_id,
            metadata={"receivers": receivers},
        )
