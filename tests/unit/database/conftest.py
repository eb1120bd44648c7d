# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest fixtures for repository tests.

Runs the real repositories against a SQLite file database through
aiosqlite, overriding the in-memory fakes from the top-level conftest.
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from src.infrastructure.database.connection import Database
from src.infrastructure.database.repositories import NotificationRepository, RiskRepository


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database with the full schema."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'sentinel.db'}")
    await database.create_all()

    yield database

    await database.close()


@pytest.fixture
def risk_repository(database: Database) -> RiskRepository:
    """SQL risk repository."""
    return RiskRepository(database)


@pytest.fixture
def notification_repository(database: Database) -> NotificationRepository:
    """SQL notification repository."""
    return NotificationRepository(database)
