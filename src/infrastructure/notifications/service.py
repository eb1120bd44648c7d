# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification dispatcher.

This service handles the notification flow up to the delivery queues:
1. Looking up the recipient and their channel preferences
2. Applying quiet hours in the recipient's timezone
3. Disabling channels whose transport or destination is missing
4. Persisting the notification with one delivery row per channel
5. Enqueueing one delivery job per enabled channel

Delivery itself happens in the channel queues (see queues.py), which
update the delivery rows and flip the notification to Sent once every
enabled channel has been delivered.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, time
from typing import Any

from src.core.exceptions import ConfigurationError, NotFoundError
from src.domains.students.provider import StudentRecord
from src.infrastructure.database.models.base import new_id
from src.infrastructure.database.models.notification import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
    NotificationPriority,
    NotificationRecipient,
    NotificationStatus,
)
from src.infrastructure.database.repositories.notification import NotificationRepository
from src.infrastructure.notifications.channels.base import ChannelType
from src.infrastructure.notifications.queues import DeliveryQueues
from src.utils.datetime import local_time, utc_now

logger = logging.getLogger(__name__)

SHORT_MESSAGE_LENGTH = 160
RISK_LEVEL_CHANGE = "Risk Level Change"

# Channels held back during quiet hours unless the priority is Critical
QUIET_HOURS_CHANNELS = frozenset({ChannelType.EMAIL.value, ChannelType.SMS.value})


def shorten(message: str, max_length: int = SHORT_MESSAGE_LENGTH) -> str:
    """Message itself when it fits, else its first max_length - 3 chars + "..."."""
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def is_quiet_hours(
    now: datetime,
    timezone_name: str | None,
    start: time | None,
    end: time | None,
) -> bool:
    """Check if a moment falls inside a quiet-hours window.

    Both bounds are inclusive. A window whose start is after its end wraps
    midnight (22:00-06:00).

    Args:
        now: Aware datetime to check.
        timezone_name: IANA timezone of the recipient.
        start: Start of quiet hours, local time.
        end: End of quiet hours, local time.

    Returns:
        True if in quiet hours.
    """
    if start is None or end is None:
        return False

    current = local_time(now, timezone_name)

    # Handle overnight quiet hours
    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def delay_until(deliver_at: datetime | None, now: datetime) -> int | None:
    """Milliseconds from now until deliver_at; None when already due."""
    if deliver_at is None:
        return None
    delay = int((deliver_at - now).total_seconds() * 1000)
    return delay if delay > 0 else None


def default_preferences(recipient_id: str) -> NotificationPreference:
    """All channels on, no quiet hours."""
    return NotificationPreference(
        recipient_id=recipient_id,
        email_enabled=True,
        sms_enabled=True,
        in_app_enabled=True,
        quiet_hours_start=None,
        quiet_hours_end=None,
    )


class NotificationDispatcher:
    """Creates notifications and fans them out to the delivery queues.

    Attributes:
        repository: Notification persistence.
        queues: Channel delivery queues.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        queues: DeliveryQueues,
        clock: Callable[[], datetime] = utc_now,
        short_message_length: int = SHORT_MESSAGE_LENGTH,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            repository: Notification persistence.
            queues: Channel delivery queues.
            clock: Returns the current aware datetime.
            short_message_length: Maximum short message length.
        """
        self.repository = repository
        self.queues = queues
        self._clock = clock
        self._short_message_length = short_message_length

    async def create_notification(
        self,
        recipient_id: str,
        notification_type: str,
        priority: NotificationPriority | str,
        title: str,
        message: str,
        requested_channels: Iterable[ChannelType | str],
        related_student_id: str | None = None,
        created_by: str | None = None,
        short_message: str | None = None,
        action_url: str | None = None,
        deliver_at: datetime | None = None,
    ) -> Notification:
        """Create a notification and enqueue its deliveries.

        A channel is enabled only when it was requested, the recipient's
        preferences allow it, quiet hours do not hold it back, and its
        transport and destination are available. The record is persisted
        before anything is enqueued.

        Args:
            recipient_id: Who receives the notification.
            notification_type: Notification type.
            priority: Normal, High or Critical.
            title: Notification title.
            message: Full message body.
            requested_channels: Channels the caller wants.
            related_student_id: Student the notification is about.
            created_by: User or process that created it.
            short_message: Body for SMS. Derived from message if omitted;
                shortened to the short message length either way.
            action_url: Link for the recipient.
            deliver_at: Delay the deliveries until this time.

        Returns:
            The persisted notification.

        Raises:
            NotFoundError: If the recipient does not exist.
        """
        priority = NotificationPriority(priority)
        recipient = await self.repository.get_recipient(recipient_id)
        if recipient is None or not recipient.is_active:
            raise NotFoundError("Recipient", recipient_id)

        preferences = await self.repository.get_preferences(recipient_id)
        if preferences is None:
            preferences = default_preferences(recipient_id)

        now = self._clock()
        requested = {ChannelType(c).value for c in requested_channels}
        quiet = is_quiet_hours(
            now, recipient.timezone, preferences.quiet_hours_start, preferences.quiet_hours_end
        )

        notification_id = new_id()
        deliveries = [
            self._plan_delivery(
                notification_id, channel, requested, preferences, recipient, priority, quiet
            )
            for channel in ChannelType
        ]

        notification = Notification(
            id=notification_id,
            recipient_id=recipient_id,
            notification_type=notification_type,
            priority=priority.value,
            title=title,
            message=message,
            short_message=shorten(short_message or message, self._short_message_length),
            related_student_id=related_student_id,
            created_by=created_by,
            action_url=action_url,
            scheduled_for=deliver_at,
            status=NotificationStatus.PENDING.value,
            deliveries=deliveries,
        )
        await self.repository.create_notification(notification)

        enabled = [d.channel for d in deliveries if d.enabled]
        if not enabled:
            logger.warning(
                "Notification %s for %s has no enabled channel",
                notification_id,
                recipient_id,
            )
            return notification

        await self._enqueue(notification_id, enabled, delay_until(deliver_at, now))

        logger.info(
            "Created %s notification %s for %s on %s",
            priority.value,
            notification_id,
            recipient_id,
            ", ".join(enabled),
        )
        return await self.repository.get_notification(notification_id) or notification

    def _plan_delivery(
        self,
        notification_id: str,
        channel: ChannelType,
        requested: set[str],
        preferences: NotificationPreference,
        recipient: NotificationRecipient,
        priority: NotificationPriority,
        quiet: bool,
    ) -> NotificationDelivery:
        name = channel.value
        delivery = NotificationDelivery(
            id=new_id(),
            notification_id=notification_id,
            channel=name,
            enabled=False,
            sent=False,
            attempts=0,
            failed=False,
            errors=[],
        )

        if name not in requested or not preferences.channel_enabled(name):
            return delivery

        if quiet and name in QUIET_HOURS_CHANNELS and priority != NotificationPriority.CRITICAL:
            logger.debug("Holding back %s for %s during quiet hours", name, recipient.id)
            return delivery

        transport = self.queues.channel(name)
        try:
            if transport is None:
                raise ConfigurationError(name, f"No delivery queue for {name}")
            transport.ensure_configured()
        except ConfigurationError as e:
            logger.warning("Channel %s disabled for %s: %s", name, recipient.id, e.message)
            delivery.errors = [self._error(e.message)]
            return delivery

        if not transport.resolve_destination(recipient.id, recipient.email, recipient.phone):
            delivery.errors = [self._error(f"Recipient {recipient.id} has no {name} destination")]
            return delivery

        delivery.enabled = True
        return delivery

    def _error(self, message: str) -> dict[str, Any]:
        return {
            "message": message,
            "attempt": 0,
            "terminal": True,
            "occurred_at": self._clock().isoformat(),
        }

    async def _enqueue(self, notification_id: str, channels: list[str], delay: int | None) -> None:
        """Enqueue every channel; a failed enqueue only touches its own channel."""
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.queues.enqueue, channel, notification_id, delay)
                for channel in channels
            ),
            return_exceptions=True,
        )
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to enqueue %s delivery for notification %s: %s",
                    channel,
                    notification_id,
                    result,
                )
                await self.repository.record_delivery_error(
                    notification_id, channel, f"Enqueue failed: {result}"
                )

    async def send_escalation_alert(
        self,
        student: StudentRecord,
        recipient_ids: Iterable[str],
        old_level: str,
        new_level: str,
        score: int,
    ) -> list[Notification]:
        """Notify every recipient that a student's risk level went up.

        A missing recipient is logged and skipped.

        Returns:
            The notifications that were created.
        """
        critical = new_level == "Critical"
        channels = [ChannelType.IN_APP, ChannelType.EMAIL]
        if critical:
            channels.append(ChannelType.SMS)

        student_label = f"{student.full_name} ({student.roll_number})" if student.roll_number else student.full_name
        message = (
            f"Risk level changed for {student_label} from {old_level} to {new_level}. "
            f"Current risk score: {score}."
        )

        notifications: list[Notification] = []
        for recipient_id in recipient_ids:
            try:
                notification = await self.create_notification(
                    recipient_id=recipient_id,
                    notification_type=RISK_LEVEL_CHANGE,
                    priority=NotificationPriority.CRITICAL if critical else NotificationPriority.HIGH,
                    title=f"Risk Alert: {student.full_name}",
                    message=message,
                    requested_channels=channels,
                    related_student_id=student.student_id,
                    created_by="risk-pipeline",
                    action_url=f"/students/{student.student_id}",
                )
            except NotFoundError as e:
                logger.warning("Skipping escalation alert: %s", e.message)
                continue
            notifications.append(notification)

        logger.info(
            "Escalation alert for student %s (%s -> %s) sent to %d recipients",
            student.student_id,
            old_level,
            new_level,
            len(notifications),
        )
        return notifications

    async def resend(self, notification_id: str, channel: ChannelType | str) -> bool:
        """Manually re-arm and enqueue a channel that failed.

        Returns:
            True if a new delivery job was enqueued.
        """
        name = ChannelType(channel).value
        if not await self.repository.reset_delivery(notification_id, name):
            return False
        await self._enqueue(notification_id, [name], None)
        logger.info("Resending notification %s via %s", notification_id, name)
        return True

    async def cancel_scheduled(self, notification_id: str) -> bool:
        """Cancel a notification before any worker has claimed it."""
        cancelled = await self.repository.cancel_notification(notification_id)
        if cancelled:
            logger.info("Cancelled notification %s", notification_id)
        return cancelled

    async def mark_read(self, notification_id: str) -> bool:
        return await self.repository.mark_read(notification_id)

    async def soft_delete(self, notification_id: str) -> bool:
        """Hide a notification. Pending deliveries are skipped by workers."""
        deleted = await self.repository.soft_delete(notification_id)
        if deleted:
            logger.info("Soft-deleted notification %s", notification_id)
        return deleted

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        return await self.repository.list_for_recipient(recipient_id, unread_only, limit)
