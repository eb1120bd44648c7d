# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Trend and escalation detection.

Compares a new calculation with the previous one:
- trend: Worsening / Improving / Stable with a +-5 point dead band
- percent_change: relative score change, 0.0 when there is no usable prior
- should_escalate: alert only when the level rank strictly increases

The rapid-increase sweep scans recent snapshot history for jumps of more
than 15 points between consecutive snapshots taken at most 7 days apart.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

from src.core.risk.combiner import RiskLevel

TREND_DEAD_BAND = 5
RAPID_INCREASE_THRESHOLD = 15
RAPID_INCREASE_MAX_GAP = timedelta(days=7)

LEVEL_RANK: dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RiskTrend(str, Enum):
    """Direction of change between two calculations."""

    IMPROVING = "Improving"
    STABLE = "Stable"
    WORSENING = "Worsening"


def compute_trend(new_score: int, previous_score: int | None) -> RiskTrend:
    """Classify the score change. No prior score means Stable."""
    if previous_score is None:
        return RiskTrend.STABLE
    delta = new_score - previous_score
    if delta > TREND_DEAD_BAND:
        return RiskTrend.WORSENING
    if delta < -TREND_DEAD_BAND:
        return RiskTrend.IMPROVING
    return RiskTrend.STABLE


def percent_change(new_score: int, previous_score: int | None) -> float:
    """Relative change in percent, rounded to two decimals.

    Returns 0.0 when there is no prior score or the prior score is zero.
    """
    if not previous_score:
        return 0.0
    return round((new_score - previous_score) / previous_score * 100, 2)


def level_rank(level: RiskLevel | str | None) -> int:
    """Severity rank of a level. Missing levels rank as Low."""
    if level is None:
        return LEVEL_RANK[RiskLevel.LOW]
    return LEVEL_RANK[RiskLevel(level)]


def should_escalate(previous_level: RiskLevel | str | None, new_level: RiskLevel | str) -> bool:
    """Return True iff the new level is strictly more severe.

    A student without a previous level is treated as Low, so a first
    calculation at Medium or above escalates.
    """
    return level_rank(new_level) > level_rank(previous_level)


@dataclass(frozen=True)
class ScorePoint:
    """One historical score for a student."""

    student_id: str
    score: int
    calculated_at: datetime


@dataclass(frozen=True)
class RapidIncrease:
    """A flagged jump between two consecutive snapshots.

    Attributes:
        student_id: Student identifier.
        previous_score: Earlier snapshot score.
        current_score: Later snapshot score.
        increase: current_score - previous_score.
        days_between: Whole days between the two snapshots.
        detected_at: Timestamp of the later snapshot.
    """

    student_id: str
    previous_score: int
    current_score: int
    increase: int
    days_between: int
    detected_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "previous_score": self.previous_score,
            "current_score": self.current_score,
            "increase": self.increase,
            "days_between": self.days_between,
            "detected_at": self.detected_at.isoformat(),
        }


def detect_rapid_increases(
    points: Iterable[ScorePoint],
    threshold: int = RAPID_INCREASE_THRESHOLD,
    max_gap: timedelta = RAPID_INCREASE_MAX_GAP,
) -> list[RapidIncrease]:
    """Flag students whose score jumped sharply between snapshots.

    Points are grouped per student and ordered by time. Every pair of
    consecutive snapshots is checked; the most recent qualifying pair is
    reported for each student.

    Args:
        points: Snapshot scores, any order, any number of students.
        threshold: Increase must be strictly greater than this.
        max_gap: Snapshots must be at most this far apart.

    Returns:
        One RapidIncrease per flagged student, ordered by increase descending.
    """
    by_student: dict[str, list[ScorePoint]] = {}
    for point in points:
        by_student.setdefault(point.student_id, []).append(point)

    flagged: list[RapidIncrease] = []
    for student_id, history in by_student.items():
        history.sort(key=lambda p: p.calculated_at)
        latest: RapidIncrease | None = None
        for earlier, later in zip(history, history[1:]):
            increase = later.score - earlier.score
            gap = later.calculated_at - earlier.calculated_at
            if increase > threshold and gap <= max_gap:
                latest = RapidIncrease(
                    student_id=student_id,
                    previous_score=earlier.score,
                    current_score=later.score,
                    increase=increase,
                    days_between=gap.days,
                    detected_at=later.calculated_at,
                )
        if latest is not None:
            flagged.append(latest)

    flagged.sort(key=lambda r: r.increase, reverse=True)
    return flagged
