# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- In-memory repositories mirroring the SQLAlchemy repositories
- A fake student data provider
- Fake channel transports and delivery queues
- A fixed clock
"""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any

import pytest

from src.core.exceptions import NotFoundError, ValidationError
from src.core.risk.factors import StudentSignals
from src.core.risk.trend import ScorePoint
from src.domains.students.provider import StudentRecord
from src.infrastructure.database.models.notification import (
    Notification,
    NotificationPreference,
    NotificationRecipient,
    NotificationStatus,
)
from src.infrastructure.database.models.risk import RiskProfile, RiskSnapshot
from src.infrastructure.database.repositories.notification import DeliveryClaim
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)
from src.utils.datetime import utc_now


# =============================================================================
# In-Memory Repositories
# =============================================================================


class FakeNotificationRepository:
    """NotificationRepository backed by dictionaries.

    Methods hold a lock so delivery workers on other threads see
    consistent state.
    """

    def __init__(self) -> None:
        self.recipients: dict[str, NotificationRecipient] = {}
        self.preferences: dict[str, NotificationPreference] = {}
        self.notifications: dict[str, Notification] = {}
        self._lock = threading.Lock()

    def add_recipient(
        self,
        recipient_id: str,
        email: str | None = None,
        phone: str | None = None,
        timezone_name: str = "UTC",
        is_active: bool = True,
        **preferences: Any,
    ) -> NotificationRecipient:
        recipient = NotificationRecipient(
            id=recipient_id,
            full_name=f"User {recipient_id}",
            role="counselor",
            email=email,
            phone=phone,
            timezone=timezone_name,
            is_active=is_active,
        )
        self.recipients[recipient_id] = recipient
        if preferences:
            values = {
                "email_enabled": True,
                "sms_enabled": True,
                "in_app_enabled": True,
                "quiet_hours_start": None,
                "quiet_hours_end": None,
                **preferences,
            }
            self.preferences[recipient_id] = NotificationPreference(
                recipient_id=recipient_id, **values
            )
        return recipient

    def delivery(self, notification_id: str, channel: str):
        return self.notifications[notification_id].delivery(channel)

    async def get_recipient(self, recipient_id: str) -> NotificationRecipient | None:
        return self.recipients.get(recipient_id)

    async def get_preferences(self, recipient_id: str) -> NotificationPreference | None:
        return self.preferences.get(recipient_id)

    async def save_recipient(self, recipient: NotificationRecipient) -> NotificationRecipient:
        self.recipients[recipient.id] = recipient
        return recipient

    async def save_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        self.preferences[preferences.recipient_id] = preferences
        return preferences

    async def create_notification(self, notification: Notification) -> Notification:
        with self._lock:
            if notification.created_at is None:
                notification.created_at = utc_now()
            self.notifications[notification.id] = notification
        return notification

    async def get_notification(self, notification_id: str) -> Notification | None:
        return self.notifications.get(notification_id)

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        found = [
            n for n in self.notifications.values()
            if n.recipient_id == recipient_id
            and n.deleted_at is None
            and (not unread_only or n.read_at is None)
        ]
        found.sort(key=lambda n: n.created_at, reverse=True)
        return found[:limit]

    async def cancel_notification(self, notification_id: str) -> bool:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or notification.status != NotificationStatus.PENDING.value:
                return False
            if any(d.claimed_at is not None for d in notification.deliveries):
                return False
            notification.status = NotificationStatus.CANCELLED.value
        return True

    async def mark_read(self, notification_id: str) -> bool:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or notification.deleted_at is not None:
                return False
            notification.status = NotificationStatus.READ.value
            notification.read_at = utc_now()
        return True

    async def soft_delete(self, notification_id: str) -> bool:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or notification.deleted_at is not None:
                return False
            notification.deleted_at = utc_now()
        return True

    async def claim_delivery(self, notification_id: str, channel: str) -> DeliveryClaim | None:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or notification.deleted_at is not None:
                return None
            if notification.status == NotificationStatus.CANCELLED.value:
                return None
            delivery = notification.delivery(channel)
            if delivery is None or not delivery.enabled or delivery.sent or delivery.failed:
                return None

            recipient = self.recipients.get(notification.recipient_id)
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
        with self._lock:
            notification = self.notifications.get(notification_id)
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
            return notification.status

    async def record_delivery_error(
        self,
        notification_id: str,
        channel: str,
        message: str,
        terminal: bool = False,
        disable: bool = False,
    ) -> None:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None:
                return
            delivery = notification.delivery(channel)
            if delivery is None:
                return
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
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or notification.deleted_at is not None:
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
        counts: dict[str, dict[str, int]] = {}
        for notification in self.notifications.values():
            for delivery in notification.deliveries:
                bucket = counts.setdefault(
                    delivery.channel, {"pending": 0, "sent": 0, "failed": 0, "disabled": 0}
                )
                if delivery.sent:
                    bucket["sent"] += 1
                elif delivery.failed:
                    bucket["failed"] += 1
                elif not delivery.enabled:
                    bucket["disabled"] += 1
                else:
                    bucket["pending"] += 1
        return counts


class FakeRiskRepository:
    """RiskRepository backed by a dict of profiles and a list of snapshots."""

    def __init__(self) -> None:
        self.profiles: dict[str, RiskProfile] = {}
        self.snapshots: list[RiskSnapshot] = []

    def set_profile(self, student_id: str, total_score: int, level: str) -> RiskProfile:
        profile = RiskProfile(
            student_id=student_id,
            total_score=total_score,
            level=level,
            factor_scores={},
            dropout_probability_band="<20%",
            predicted_timeline="Low risk",
            urgency="Low",
            last_calculated_at=utc_now(),
        )
        self.profiles[student_id] = profile
        return profile

    def add_score(self, student_id: str, score: int, calculated_at: datetime, level: str = "Low") -> None:
        self.snapshots.append(
            RiskSnapshot(
                student_id=student_id,
                total_score=score,
                level=level,
                calculated_at=calculated_at,
            )
        )

    async def get_profile(self, student_id: str) -> RiskProfile | None:
        return self.profiles.get(student_id)

    async def save_snapshot(self, snapshot: RiskSnapshot) -> RiskSnapshot:
        self.snapshots.append(snapshot)
        return snapshot

    async def upsert_profile(self, student_id: str, values: dict[str, Any]) -> RiskProfile:
        profile = self.profiles.get(student_id)
        if profile is None:
            profile = RiskProfile(student_id=student_id, **values)
            self.profiles[student_id] = profile
        else:
            for key, value in values.items():
                setattr(profile, key, value)
        return profile

    async def list_score_points(self, since: datetime) -> list[ScorePoint]:
        return [
            ScorePoint(s.student_id, s.total_score, s.calculated_at)
            for s in self.snapshots
            if s.calculated_at >= since
        ]

    async def list_level_history(self, since: datetime) -> list[tuple[str, str, int, datetime]]:
        rows = [
            (s.student_id, s.level, s.total_score, s.calculated_at)
            for s in self.snapshots
            if s.calculated_at >= since
        ]
        return sorted(rows, key=lambda row: row[3])

    async def list_snapshots(self, student_id: str, limit: int = 30) -> list[RiskSnapshot]:
        found = [s for s in self.snapshots if s.student_id == student_id]
        found.sort(key=lambda s: s.calculated_at, reverse=True)
        return found[:limit]


# =============================================================================
# Student Data
# =============================================================================


class FakeStudentProvider:
    """StudentDataProvider serving canned signals.

    Attributes:
        signals: Raw signal payloads per student.
        missing: Students that raise NotFoundError.
        malformed: Students whose signals raise ValidationError.
        recipients: Alert recipients per student.
        delay: Seconds get_signals sleeps before answering.
    """

    def __init__(self) -> None:
        self.signals: dict[str, dict[str, Any]] = {}
        self.missing: set[str] = set()
        self.malformed: set[str] = set()
        self.recipients: dict[str, list[str]] = {}
        self.signal_calls: list[str] = []
        self.delay = 0.0

    def add_student(
        self,
        student_id: str,
        recipients: list[str] | None = None,
        **signals: Any,
    ) -> None:
        self.signals[student_id] = signals
        self.recipients[student_id] = recipients if recipients is not None else ["counselor-1"]

    async def get_signals(self, student_id: str) -> StudentSignals:
        self.signal_calls.append(student_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if student_id in self.missing:
            raise NotFoundError("Student", student_id)
        if student_id in self.malformed:
            raise ValidationError(
                f"Malformed signals payload for student {student_id}",
                fields=["attendance_percentage"],
            )
        return StudentSignals.from_payload(student_id, self.signals.get(student_id, {}))

    async def get_student(self, student_id: str) -> StudentRecord:
        if student_id in self.missing:
            raise NotFoundError("Student", student_id)
        return StudentRecord(
            student_id=student_id,
            full_name=f"Student {student_id}",
            roll_number=f"R-{student_id}",
        )

    async def list_active_student_ids(self) -> list[str]:
        return list(self.signals)

    async def list_alert_recipient_ids(self, student_id: str) -> list[str]:
        return list(self.recipients.get(student_id, []))


# =============================================================================
# Channels and Queues
# =============================================================================


class FakeChannel(BaseChannel):
    """Transport that records sends and replays scripted outcomes.

    Outcomes are "sent", "failed" or "skipped"; once exhausted every send
    succeeds.
    """

    def __init__(
        self,
        channel_type: ChannelType,
        configured: bool = True,
        outcomes: list[str] | None = None,
    ) -> None:
        super().__init__()
        self._channel_type = channel_type
        self.configured = configured
        self.outcomes = list(outcomes or [])
        self.sent: list[tuple[str, NotificationPayload]] = []

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    @property
    def is_configured(self) -> bool:
        return self.configured

    def resolve_destination(
        self,
        recipient_id: str,
        email: str | None,
        phone: str | None,
    ) -> str | None:
        if self._channel_type == ChannelType.EMAIL:
            return email
        if self._channel_type == ChannelType.SMS:
            return phone
        return recipient_id

    async def send(self, destination: str, payload: NotificationPayload) -> ChannelResult:
        self.sent.append((destination, payload))
        outcome = self.outcomes.pop(0) if self.outcomes else "sent"
        if outcome == "skipped":
            return self.create_skipped_result(f"{self._channel_type.value} skipped")
        if outcome == "rejected":
            return self.create_failure_result(f"{self._channel_type.value} address rejected", retryable=False)
        if outcome == "failed":
            return self.create_failure_result(f"{self._channel_type.value} provider down")
        return self.create_success_result(
            provider_id=f"{self._channel_type.value}-{len(self.sent)}"
        )


class FakeDeliveryQueues:
    """DeliveryQueues stand-in that records enqueued jobs.

    Attributes:
        channels: Transports keyed by channel name.
        enqueued: (channel, notification_id, delay) per enqueued job.
        failing: Channels whose enqueue raises ConnectionError.
    """

    def __init__(self, channels: dict[str, FakeChannel]) -> None:
        self.channels = channels
        self.enqueued: list[tuple[str, str, int | None]] = []
        self.failing: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, channel: str) -> bool:
        return channel in self.channels

    def channel(self, channel: str) -> FakeChannel | None:
        return self.channels.get(channel)

    def enqueue(self, channel: str, notification_id: str, delay: int | None = None) -> str:
        if channel in self.failing:
            raise ConnectionError(f"broker unavailable for {channel}")
        with self._lock:
            self.enqueued.append((channel, notification_id, delay))
            return f"msg-{len(self.enqueued)}"

    def channels_for(self, notification_id: str) -> set[str]:
        return {channel for channel, nid, _ in self.enqueued if nid == notification_id}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """Noon UTC, outside any overnight quiet hours."""
    return datetime(2025, 6, 16, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now: datetime):
    """Clock returning fixed_now."""
    return lambda: fixed_now


@pytest.fixture
def notification_repository() -> FakeNotificationRepository:
    """Provide an in-memory notification repository."""
    return FakeNotificationRepository()


@pytest.fixture
def risk_repository() -> FakeRiskRepository:
    """Provide an in-memory risk repository."""
    return FakeRiskRepository()


@pytest.fixture
def student_provider() -> FakeStudentProvider:
    """Provide a fake student data provider."""
    return FakeStudentProvider()


@pytest.fixture
def fake_channels() -> dict[str, FakeChannel]:
    """One configured fake transport per channel."""
    return {channel.value: FakeChannel(channel) for channel in ChannelType}


@pytest.fixture
def fake_channel_factory():
    """Build fake transports with scripted outcomes."""
    return FakeChannel


@pytest.fixture
def fake_queues(fake_channels: dict[str, FakeChannel]) -> FakeDeliveryQueues:
    """Provide delivery queues that record jobs instead of sending them."""
    return FakeDeliveryQueues(fake_channels)


@pytest.fixture
def recipient(notification_repository: FakeNotificationRepository) -> NotificationRecipient:
    """A counselor reachable on every channel."""
    return notification_repository.add_recipient(
        "counselor-1",
        email="counselor@school.example",
        phone="+15550001111",
    )


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
