# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for risk and notification data."""

from src.infrastructure.database.models.base import Base, SoftDeleteMixin, TimestampMixin
from src.infrastructure.database.models.notification import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
    NotificationPriority,
    NotificationRecipient,
    NotificationStatus,
)
from src.infrastructure.database.models.risk import RiskProfile, RiskSnapshot

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "Notification",
    "NotificationDelivery",
    "NotificationPreference",
    "NotificationPriority",
    "NotificationRecipient",
    "NotificationStatus",
    "RiskProfile",
    "RiskSnapshot",
]
