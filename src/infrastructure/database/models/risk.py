# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk profile and risk snapshot models.

RiskProfile holds the latest calculation for a student and is overwritten
on every recalculation. RiskSnapshot is the immutable history, one row per
calculation.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base, TimestampMixin, UUIDMixin


class RiskProfile(Base, TimestampMixin):
    """Current risk for one student."""

    __tablename__ = "risk_profiles"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    factor_scores: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    dropout_probability_band: Mapped[str] = mapped_column(String(32), nullable=False)
    predicted_timeline: Mapped[str] = mapped_column(String(32), nullable=False)
    urgency: Mapped[str] = mapped_column(String(16), nullable=False)
    predicted_dropout_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<RiskProfile {self.student_id} level={self.level} score={self.total_score}>"


class RiskSnapshot(Base, UUIDMixin):
    """One immutable risk calculation."""

    __tablename__ = "risk_snapshots"
    __table_args__ = (
        Index("ix_risk_snapshots_student_calculated", "student_id", "calculated_at"),
    )

    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    academic_period: Mapped[str] = mapped_column(String(16), nullable=False)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    recommendations: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    dropout_prediction: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    trend: Mapped[str] = mapped_column(String(16), nullable=False)
    previous_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    percent_change: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    data_completeness_percent: Mapped[float] = mapped_column(Float, nullable=False)
    model_version: Mapped[str] = mapped_column(String(16), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<RiskSnapshot {self.student_id} level={self.level} score={self.total_score}>"
