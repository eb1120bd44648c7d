# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk profile and snapshot persistence."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select

from src.core.risk.trend import ScorePoint
from src.infrastructure.database.connection import Database
from src.infrastructure.database.models.risk import RiskProfile, RiskSnapshot
from src.utils.datetime import ensure_utc

logger = logging.getLogger(__name__)


class RiskRepository:
    """Reads and writes risk profiles and snapshots.

    Attributes:
        database: Database used for sessions.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def get_profile(self, student_id: str) -> RiskProfile | None:
        """Get the current risk profile of a student, if any."""
        async with self.database.session() as session:
            return await session.get(RiskProfile, student_id)

    async def save_snapshot(self, snapshot: RiskSnapshot) -> RiskSnapshot:
        """Insert an immutable snapshot."""
        async with self.database.session() as session:
            session.add(snapshot)
            await session.flush()
        return snapshot

    async def upsert_profile(self, student_id: str, values: dict[str, Any]) -> RiskProfile:
        """Create or overwrite the current profile of a student.

        Args:
            student_id: Student identifier.
            values: Column values for the profile.

        Returns:
            The stored profile.
        """
        async with self.database.session() as session:
            profile = await session.get(RiskProfile, student_id, with_for_update=True)
            if profile is None:
                profile = RiskProfile(student_id=student_id, **values)
                session.add(profile)
            else:
                for key, value in values.items():
                    setattr(profile, key, value)
            await session.flush()
        return profile

    async def list_score_points(self, since: datetime) -> list[ScorePoint]:
        """Scores of all snapshots calculated at or after since."""
        async with self.database.session() as session:
            result = await session.execute(
                select(
                    RiskSnapshot.student_id,
                    RiskSnapshot.total_score,
                    RiskSnapshot.calculated_at,
                )
                .where(RiskSnapshot.calculated_at >= since)
                .order_by(RiskSnapshot.student_id, RiskSnapshot.calculated_at)
            )
            return [
                ScorePoint(
                    student_id=row.student_id,
                    score=row.total_score,
                    calculated_at=ensure_utc(row.calculated_at),
                )
                for row in result
            ]

    async def list_level_history(self, since: datetime) -> list[tuple[str, str, int, datetime]]:
        """(student_id, level, total_score, calculated_at) since a moment."""
        async with self.database.session() as session:
            result = await session.execute(
                select(
                    RiskSnapshot.student_id,
                    RiskSnapshot.level,
                    RiskSnapshot.total_score,
                    RiskSnapshot.calculated_at,
                )
                .where(RiskSnapshot.calculated_at >= since)
                .order_by(RiskSnapshot.calculated_at)
            )
            return [
                (row.student_id, row.level, row.total_score, ensure_utc(row.calculated_at))
                for row in result
            ]

    async def list_snapshots(self, student_id: str, limit: int = 30) -> list[RiskSnapshot]:
        """Most recent snapshots of a student, newest first."""
        async with self.database.session() as session:
            result = await session.execute(
                select(RiskSnapshot)
                .where(RiskSnapshot.student_id == student_id)
                .order_by(RiskSnapshot.calculated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
