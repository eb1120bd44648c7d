# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Repositories for risk and notification records."""

from src.infrastructure.database.repositories.notification import (
    DeliveryClaim,
    NotificationRepository,
)
from src.infrastructure.database.repositories.risk import RiskRepository

__all__ = [
    "DeliveryClaim",
    "NotificationRepository",
    "RiskRepository",
]
