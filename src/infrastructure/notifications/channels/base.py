# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Transport contract shared by the notification channels.

    send(destination, payload) -> ChannelResult

A transport reports one of three outcomes:
- sent: the provider accepted the message (provider_id set when known)
- failed: the attempt failed; retryable=False marks failures another
  attempt cannot fix, such as a refused address
- skipped: the transport is not configured; never retried

Transports are not assumed to be idempotent. Retry and deduplication
belong to the delivery queues.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from src.core.exceptions import ConfigurationError
from src.utils.datetime import utc_now


class ChannelType(str, Enum):
    """Delivery channels of a notification."""

    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


class DeliveryStatus(str, Enum):
    """Outcome of one transport call."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class NotificationPayload:
    """What a transport renders for one recipient.

    short_message is the body for length-limited channels (SMS);
    action_url is relative to the web app unless a channel resolves it.
    """

    notification_id: str
    notification_type: str
    title: str
    message: str
    short_message: str
    priority: str = "Normal"
    recipient_id: str | None = None
    recipient_name: str | None = None
    related_student_id: str | None = None
    action_url: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.priority == "Critical"

    def to_dict(self) -> dict[str, Any]:
        """Client-facing fields; recipient details are left out."""
        data = asdict(self)
        data.pop("recipient_id")
        data.pop("recipient_name")
        return data


@dataclass
class ChannelResult:
    """Result of one send.

    Attributes:
        channel: Channel that was used.
        status: Delivery status.
        provider_id: Provider message id, if the provider returned one.
        error_message: Why the send failed or was skipped.
        retryable: Whether another attempt could succeed.
        metadata: Extra details for logs.
    """

    channel: ChannelType
    status: DeliveryStatus
    provider_id: str | None = None
    error_message: str | None = None
    retryable: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SENT

    @property
    def should_retry(self) -> bool:
        return self.status == DeliveryStatus.FAILED and self.retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "provider_id": self.provider_id,
            "error_message": self.error_message,
            "retryable": self.retryable,
            "metadata": self.metadata,
        }


class BaseChannel(ABC):
    """A transport for one ChannelType.

    Subclasses pick their destination from the recipient's contact data
    and turn provider errors into failed results instead of raising.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType: ...

    @property
    def is_configured(self) -> bool:
        """Whether the transport has the credentials it needs."""
        return True

    def ensure_configured(self) -> None:
        """Raise if the transport cannot send.

        Raises:
            ConfigurationError: If the transport is not configured.
        """
        if not self.is_configured:
            raise ConfigurationError(
                self.channel_type.value,
                f"{self.channel_type.value} transport is not configured",
            )

    @abstractmethod
    def resolve_destination(
        self,
        recipient_id: str,
        email: str | None,
        phone: str | None,
    ) -> str | None:
        """Pick this channel's destination, None if the recipient has none."""

    @abstractmethod
    async def send(self, destination: str, payload: NotificationPayload) -> ChannelResult:
        """Send a notification to one destination.

        Args:
            destination: Email address, phone number or user id.
            payload: The notification content.

        Returns:
            ChannelResult describing the outcome.
        """

    def create_success_result(
        self,
        provider_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.SENT,
            provider_id=provider_id,
            metadata={"sent_at": utc_now().isoformat(), **(metadata or {})},
        )

    def create_failure_result(
        self,
        error_message: str,
        metadata: dict[str, Any] | None = None,
        retryable: bool = True,
    ) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.FAILED,
            error_message=error_message,
            retryable=retryable,
            metadata=metadata or {},
        )

    def create_skipped_result(self, reason: str) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.SKIPPED,
            error_message=reason,
            retryable=False,
        )
