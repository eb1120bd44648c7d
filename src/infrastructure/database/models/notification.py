# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification, delivery, recipient and preference models.

A Notification owns one NotificationDelivery row per channel. Delivery
workers only touch their own channel's row, and take a row lock on the
parent notification while doing so, so the "all enabled channels sent"
transition is computed once.
"""

from datetime import datetime, time
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.infrastructure.database.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDMixin,
)


class NotificationPriority(str, Enum):
    """Notification priority."""

    NORMAL = "Normal"
    HIGH = "High"
    CRITICAL = "Critical"


class NotificationStatus(str, Enum):
    """Notification lifecycle status."""

    PENDING = "Pending"
    SENT = "Sent"
    READ = "Read"
    CANCELLED = "Cancelled"


class NotificationRecipient(Base, TimestampMixin):
    """Directory entry for someone who can receive notifications."""

    __tablename__ = "notification_recipients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="counselor")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class NotificationPreference(Base, TimestampMixin):
    """Per-recipient channel switches and quiet hours."""

    __tablename__ = "notification_preferences"

    recipient_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("notification_recipients.id", ondelete="CASCADE"),
        primary_key=True,
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    quiet_hours_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)

    def channel_enabled(self, channel: str) -> bool:
        return bool(getattr(self, f"{channel}_enabled", False))


class Notification(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """A message to one recipient, delivered over one or more channels."""

    __tablename__ = "notifications"

    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[str] = mapped_column(
        String(16), nullable=False, default=NotificationPriority.NORMAL.value
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    short_message: Mapped[str] = mapped_column(String(160), nullable=False)
    related_student_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=NotificationStatus.PENDING.value, index=True
    )
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deliveries: Mapped[list["NotificationDelivery"]] = relationship(
        back_populates="notification",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def delivery(self, channel: str) -> "NotificationDelivery | None":
        for delivery in self.deliveries:
            if delivery.channel == channel:
                return delivery
        return None

    @property
    def all_enabled_sent(self) -> bool:
        """True when every enabled channel has been sent."""
        enabled = [d for d in self.deliveries if d.enabled]
        return bool(enabled) and all(d.sent for d in enabled)

    def channels(self) -> dict[str, dict[str, Any]]:
        """Channel map: channel -> {enabled, sent, sent_at, errors}."""
        return {d.channel: d.to_dict() for d in self.deliveries}

    def __repr__(self) -> str:
        return f"<Notification {self.id} {self.notification_type} status={self.status}>"


class NotificationDelivery(Base, UUIDMixin, TimestampMixin):
    """Delivery state of one channel of a notification.

    Attributes:
        enabled: Channel was selected after preferences and quiet hours.
        sent: Transport reported success.
        attempts: Number of claimed attempts.
        errors: Append-only log of {message, attempt, terminal, occurred_at}.
        failed: Retries exhausted; only a manual resend re-arms the channel.
        claimed_at: When a worker last claimed this delivery.
    """

    __tablename__ = "notification_deliveries"
    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_notification_delivery_channel"),
    )

    notification_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    notification: Mapped[Notification] = relationship(back_populates="deliveries")

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "sent": self.sent,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "errors": list(self.errors or []),
        }
