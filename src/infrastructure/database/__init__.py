# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure.

This package provides SQLAlchemy async database access for:
- Risk profiles and immutable risk snapshots
- Notifications, per-channel deliveries, recipients and preferences

Example:
    from src.infrastructure.database import Database, RiskRepository

    database = Database.from_settings(settings.database)
    await database.create_all()
    risk_repository = RiskRepository(database)
"""

from src.infrastructure.database.connection import (
    Database,
    DatabaseError,
    _clear_thread_db_connections,
)
from src.infrastructure.database.repositories import (
    DeliveryClaim,
    NotificationRepository,
    RiskRepository,
)

__all__ = [
    "Database",
    "DatabaseError",
    "DeliveryClaim",
    "NotificationRepository",
    "RiskRepository",
    "_clear_thread_db_connections",
]
