# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification persistence.

Every method that changes a delivery row first locks the owning
notification row (SELECT ... FOR UPDATE), so concurrent workers for
different channels of the same notification serialize their writes and
the Pending -> Sent transition happens exactly once.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.connection import Database
from src.infrastructure.database.models.notification import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
    NotificationRecipient,
    NotificationStatus,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryClaim:
    """Everything a delivery worker needs for one attempt.

    Attributes:
        notification_id: Notification being delivered.
        channel: Channel of this delivery.
        attempt: Attempt number, starting at 1.
        recipient_id: Recipient identifier.
        recipient_name: Recipient display name.
        email: Recipient email address.
        phone: Recipient phone number.
        notification_type: Notification type.
        priority: Notification priority.
        title: Notification title.
        message: Full message.
        short_message: Message for length-constrained channels.
        related_student_id: Student the notification is about.
        action_url: Optional link for the recipient.
    """

    notification_id: str
    channel: str
    attempt: int
    recipient_id: str
    recipient_name: str | None
    email: str | None
    phone: str | None
    notification_type: str
    priority: str
    title: str
    message: str
    short_message: str
    related_student_id: str | None = None
    action_url: str | None = None


class NotificationRepository:
    """Reads and writes notifications, deliveries, recipients and preferences.

    Attributes:
        database: Database used for sessions.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def _lock_notification(self, session: AsyncSession, notification_id: str) -> Notification | None:
        result = await session.execute(
            select(Notification)
            .where(Notification.id == notification_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Recipients and preferences
    # =========================================================================

    async def get_recipient(self, recipient_id: str) -> NotificationRecipient | None:
        async with self.database.session() as session:
            return await session.get(NotificationRecipient, recipient_id)

    async def get_preferences(self, recipient_id: str) -> NotificationPreference | None:
        async with self.database.session() as session:
            return await session.get(NotificationPreference, recipient_id)

    async def save_recipient(self, recipient: NotificationRecipient) -> NotificationRecipient:
        """Insert or update a recipient."""
        async with self.database.session() as session:
            recipient = await session.merge(recipient)
        return recipient

    async def save_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        """Insert or update a recipient's preferences."""
        async with self.database.session() as session:
            preferences = await session.merge(preferences)
        return preferences

    # =========================================================================
    # Notifications
    # =========================================================================

    async def create_notification(self, notification: Notification) -> Notification:
        """Persist a notification together with its delivery rows."""
        async with self.database.session() as session:
            session.add(notification)
            await session.flush()
        return notification

    async def get_notification(self, notification_id: str) -> Notification | None:
        async with self.database.session() as session:
            return await session.get(Notification, notification_id)

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """Visible notifications of a recipient, newest first."""
        async with self.database.session() as session:
            query = (
                select(Notification)
                .where(
                    Notification.recipient_id == recipient_id,
                    Notification.deleted_at.is_(None),
                )
                .order_by(Notification.created_at.desc())
                .limit(limit)
            )
            if unread_only:
                query = query.where(Notification.read_at.is_(None))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def cancel_notification(self, notification_id: str) -> bool:
        """Cancel a notification no worker has claimed yet.

        Returns:
            True if cancelled.
        """
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None or notification.status != NotificationStatus.PENDING.value:
                return False
            if any(d.claimed_at is not None for d in notification.deliveries):
                return False
            notification.status = NotificationStatus.CANCELLED.value
        return True

    async def mark_read(self, notification_id: str) -> bool:
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None or notification.is_deleted:
                return False
            notification.status = NotificationStatus.READ.value
            notification.read_at = utc_now()
        return True

    async def soft_delete(self, notification_id: str) -> bool:
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None or notification.is_deleted:
                return False
            notification.deleted_at = utc_now()
        return True

    # =========================================================================
    # Deliveries
    # =========================================================================

    async def claim_delivery(self, notification_id: str, channel: str) -> DeliveryClaim | None:
        """Claim one delivery attempt.

        Returns None when there is nothing to deliver: the notification is
        gone, cancelled or deleted, or the channel is disabled, already sent
        or terminally failed.
        """
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None or notification.is_deleted:
                return None
            if notification.status == NotificationStatus.CANCELLED.value:
                return None

            delivery = notification.delivery(channel)
            if delivery is None or not delivery.enabled or delivery.sent or delivery.failed:
                return None

            recipient = await session.get(NotificationRecipient, notification.recipient_id)

            delivery.attempts += 1
            delivery.claimed_at = utc_now()

            return DeliveryClaim(
                notification_id=notification.id,
                channel=channel,
                attempt=delivery.attempts,
                recipient_id=notification.recipient_id,
                recipient_name=recipient.full_name if recipient else None,
                email=recipient.email if recipient else None,
                phone=recipient.phone if recipient else None,
                notification_type=notification.notification_type,
                priority=notification.priority,
                title=notification.title,
                message=notification.message,
                short_message=notification.short_message,
                related_student_id=notification.related_student_id,
                action_url=notification.action_url,
            )

    async def mark_delivery_sent(
        self,
        notification_id: str,
        channel: str,
        provider_id: str | None = None,
    ) -> str | None:
        """Mark a channel as sent.

        Flips the notification to Sent once every enabled channel is sent.

        Returns:
            The notification status afterwards, or None if not found.
        """
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None:
                return None
            delivery = notification.delivery(channel)
            if delivery is None:
                return notification.status

            if not delivery.sent:
                delivery.sent = True
                delivery.sent_at = utc_now()
                delivery.provider_id = provider_id

            if (
                notification.status == NotificationStatus.PENDING.value
                and notification.all_enabled_sent
            ):
                notification.status = NotificationStatus.SENT.value
                logger.info("Notification %s sent on all channels", notification_id)

            return notification.status

    async def record_delivery_error(
        self,
        notification_id: str,
        channel: str,
        message: str,
        terminal: bool = False,
        disable: bool = False,
    ) -> None:
        """Append an error to a channel's log.

        Args:
            notification_id: Notification identifier.
            channel: Channel the error belongs to.
            message: Error description.
            terminal: No automatic retry will follow.
            disable: Also turn the channel off.
        """
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None:
                return
            delivery = notification.delivery(channel)
            if delivery is None:
                return

            # Reassign so the JSON column is flagged dirty
            delivery.errors = [
                *(delivery.errors or []),
                {
                    "message": message,
                    "attempt": delivery.attempts,
                    "terminal": terminal,
                    "occurred_at": utc_now().isoformat(),
                },
            ]
            if terminal:
                delivery.failed = True
            if disable:
                delivery.enabled = False

    async def reset_delivery(self, notification_id: str, channel: str) -> bool:
        """Re-arm a channel for a manual resend.

        The error log is kept. Sent channels are never re-armed.

        Returns:
            True if the channel can be enqueued again.
        """
        async with self.database.session() as session:
            notification = await self._lock_notification(session, notification_id)
            if notification is None or notification.is_deleted:
                return False
            if notification.status == NotificationStatus.CANCELLED.value:
                return False
            delivery = notification.delivery(channel)
            if delivery is None or delivery.sent:
                return False

            delivery.enabled = True
            delivery.failed = False
            delivery.attempts = 0
            delivery.claimed_at = None
        return True

    async def delivery_counts(self) -> dict[str, dict[str, int]]:
        """Delivery counts per channel: pending, sent, failed, disabled."""
        async with self.database.session() as session:
            result = await session.execute(
                select(
                    NotificationDelivery.channel,
                    NotificationDelivery.enabled,
                    NotificationDelivery.sent,
                    NotificationDelivery.failed,
                    func.count(),
                ).group_by(
                    NotificationDelivery.channel,
                    NotificationDelivery.enabled,
                    NotificationDelivery.sent,
                    NotificationDelivery.failed,
                )
            )
            counts: dict[str, dict[str, int]] = {}
            for channel, enabled, sent, failed, count in result:
                bucket = counts.setdefault(
                    channel, {"pending": 0, "sent": 0, "failed": 0, "disabled": 0}
                )
                if sent:
                    bucket["sent"] += count
                elif failed:
                    bucket["failed"] += count
                elif not enabled:
                    bucket["disabled"] += count
                else:
                    bucket["pending"] += count
            return counts
