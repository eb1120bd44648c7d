# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Channel delivery queues.

Each channel gets its own Dramatiq actor and queue, declared on the broker
passed in at startup. A job carries only the notification id; the worker
claims the channel's delivery row, sends through the transport and writes
the outcome back.

Retry policy:
- email, sms: 3 attempts, exponential backoff from 2s
- in_app: 2 attempts, fixed 500ms delay

A failed attempt appends to the delivery's error log and raises
TransportError so the broker schedules the next attempt. The last attempt
is recorded as terminal and returns normally, as is a failure the
transport marks as not retryable; from then on only a manual
resend re-arms the channel.

Example:
    queues = DeliveryQueues.build(broker, channels, repository, settings.delivery)
    queues.enqueue("email", notification.id, delay=60_000)
"""

import logging
from dataclasses import dataclass
from typing import Any

import dramatiq

from src.core.config.settings import DeliverySettings
from src.core.exceptions import TransportError
from src.infrastructure.background.broker import Queues
from src.infrastructure.background.tasks.base import run_async
from src.infrastructure.database.repositories.notification import (
    DeliveryClaim,
    NotificationRepository,
)
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    NotificationPayload,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts and backoff for one channel.

    Attributes:
        max_attempts: Total attempts including the first.
        min_backoff: First retry delay in milliseconds.
        max_backoff: Upper bound for the retry delay in milliseconds.
    """

    max_attempts: int
    min_backoff: int
    max_backoff: int

    @property
    def max_retries(self) -> int:
        return max(self.max_attempts - 1, 0)

    @classmethod
    def fixed(cls, max_attempts: int, delay: int) -> "RetryPolicy":
        """Policy whose backoff never grows past the given delay."""
        return cls(max_attempts=max_attempts, min_backoff=delay, max_backoff=delay)

    @classmethod
    def for_channel(cls, channel: ChannelType, settings: DeliverySettings) -> "RetryPolicy":
        if channel == ChannelType.EMAIL:
            return cls(settings.email_max_attempts, settings.email_min_backoff, settings.email_max_backoff)
        if channel == ChannelType.SMS:
            return cls(settings.sms_max_attempts, settings.sms_min_backoff, settings.sms_max_backoff)
        return cls.fixed(settings.in_app_max_attempts, settings.in_app_delay)


def queue_name(channel: ChannelType) -> str:
    return Queues.for_channel(channel.value)


def build_payload(claim: DeliveryClaim) -> NotificationPayload:
    return NotificationPayload(
        notification_id=claim.notification_id,
        notification_type=claim.notification_type,
        title=claim.title,
        message=claim.message,
        short_message=claim.short_message,
        priority=claim.priority,
        recipient_id=claim.recipient_id,
        recipient_name=claim.recipient_name,
        related_student_id=claim.related_student_id,
        action_url=claim.action_url,
    )


class ChannelQueue:
    """Durable retrying job queue for one channel.

    Attributes:
        channel: Transport this queue delivers through.
        policy: Retry policy of the actor.
        actor: The Dramatiq actor performing deliveries.
    """

    def __init__(
        self,
        broker: dramatiq.Broker,
        channel: BaseChannel,
        repository: NotificationRepository,
        policy: RetryPolicy,
    ) -> None:
        self.channel = channel
        self.repository = repository
        self.policy = policy
        self.name = channel.channel_type.value
        self.queue_name = queue_name(channel.channel_type)
        self.actor = dramatiq.actor(
            self._perform,
            actor_name=f"deliver_{self.name}",
            queue_name=self.queue_name,
            broker=broker,
            max_retries=policy.max_retries,
            min_backoff=policy.min_backoff,
            max_backoff=policy.max_backoff,
        )

    def _perform(self, notification_id: str) -> None:
        run_async(self.process(notification_id))

    def enqueue(self, notification_id: str, delay: int | None = None) -> str:
        """Enqueue a delivery job.

        Args:
            notification_id: Notification to deliver.
            delay: Milliseconds to wait before the first attempt.

        Returns:
            The broker message id.
        """
        if delay and delay > 0:
            message = self.actor.send_with_options(args=(notification_id,), delay=delay)
        else:
            message = self.actor.send(notification_id)
        logger.debug(
            "Enqueued %s delivery for notification %s (message %s)",
            self.name,
            notification_id,
            message.message_id,
        )
        return message.message_id

    async def process(self, notification_id: str) -> ChannelResult | None:
        """Run one delivery attempt.

        Returns:
            The transport result, or None if there was nothing to deliver.

        Raises:
            TransportError: If the attempt failed and another will follow.
        """
        claim = await self.repository.claim_delivery(notification_id, self.name)
        if claim is None:
            logger.debug("Nothing to deliver on %s for notification %s", self.name, notification_id)
            return None

        destination = self.channel.resolve_destination(claim.recipient_id, claim.email, claim.phone)
        if not destination:
            await self.repository.record_delivery_error(
                notification_id,
                self.name,
                f"No {self.name} destination for recipient {claim.recipient_id}",
                terminal=True,
                disable=True,
            )
            return None

        result = await self.channel.send(destination, build_payload(claim))

        if result.success:
            status = await self.repository.mark_delivery_sent(
                notification_id, self.name, result.provider_id
            )
            logger.info(
                "Delivered notification %s via %s (attempt %d, status %s)",
                notification_id,
                self.name,
                claim.attempt,
                status,
            )
            return result

        error = result.error_message or "Unknown transport error"

        if result.status == DeliveryStatus.SKIPPED:
            await self.repository.record_delivery_error(
                notification_id, self.name, error, terminal=True, disable=True
            )
            return result

        terminal = not result.retryable or claim.attempt >= self.policy.max_attempts
        await self.repository.record_delivery_error(
            notification_id, self.name, error, terminal=terminal
        )

        if terminal:
            logger.error(
                "Giving up on %s delivery for notification %s after %d attempts: %s",
                self.name,
                notification_id,
                claim.attempt,
                error,
            )
            return result

        logger.warning(
            "Attempt %d/%d of %s delivery for notification %s failed: %s",
            claim.attempt,
            self.policy.max_attempts,
            self.name,
            notification_id,
            error,
        )
        raise TransportError(
            self.name,
            error,
            details={"notification_id": notification_id, "attempt": claim.attempt},
        )


class DeliveryQueues:
    """All channel queues of the pipeline, keyed by channel name."""

    def __init__(self, queues: dict[str, ChannelQueue], repository: NotificationRepository) -> None:
        self._queues = queues
        self.repository = repository

    @classmethod
    def build(
        cls,
        broker: dramatiq.Broker,
        channels: list[BaseChannel],
        repository: NotificationRepository,
        settings: DeliverySettings,
    ) -> "DeliveryQueues":
        """Declare one actor per channel on the broker."""
        queues = {
            channel.channel_type.value: ChannelQueue(
                broker,
                channel,
                repository,
                RetryPolicy.for_channel(channel.channel_type, settings),
            )
            for channel in channels
        }
        logger.info("Declared delivery queues: %s", ", ".join(queues))
        return cls(queues, repository)

    def __contains__(self, channel: str) -> bool:
        return channel in self._queues

    def get(self, channel: str) -> ChannelQueue | None:
        return self._queues.get(channel)

    def channel(self, channel: str) -> BaseChannel | None:
        queue = self._queues.get(channel)
        return queue.channel if queue else None

    def enqueue(self, channel: str, notification_id: str, delay: int | None = None) -> str:
        """Enqueue a delivery job on a channel's queue.

        Raises:
            KeyError: If no queue exists for the channel.
        """
        return self._queues[channel].enqueue(notification_id, delay)

    async def get_stats(self) -> dict[str, Any]:
        """Delivery counts per channel plus each queue's retry policy."""
        counts = await self.repository.delivery_counts()
        return {
            name: {
                "queue": queue.queue_name,
                "max_attempts": queue.policy.max_attempts,
                **counts.get(name, {"pending": 0, "sent": 0, "failed": 0, "disabled": 0}),
            }
            for name, queue in self._queues.items()
        }
