# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for trend and escalation detection."""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.risk.combiner import RiskLevel
from src.core.risk.trend import (
    RiskTrend,
    ScorePoint,
    compute_trend,
    detect_rapid_increases,
    level_rank,
    percent_change,
    should_escalate,
)

START = datetime(2025, 6, 1, tzinfo=timezone.utc)


def point(student_id: str, score: int, day: int) -> ScorePoint:
    return ScorePoint(student_id, score, START + timedelta(days=day))


class TestComputeTrend:
    """Test trend classification."""

    @pytest.mark.parametrize(
        "new,previous,expected",
        [
            (50, None, RiskTrend.STABLE),
            (56, 50, RiskTrend.WORSENING),
            (55, 50, RiskTrend.STABLE),
            (45, 50, RiskTrend.STABLE),
            (44, 50, RiskTrend.IMPROVING),
        ],
    )
    def test_dead_band(self, new: int, previous: int | None, expected: RiskTrend) -> None:
        """Test the five point dead band."""
        assert compute_trend(new, previous) == expected


class TestPercentChange:
    """Test relative change."""

    def test_no_usable_prior(self) -> None:
        """Test that missing or zero priors give 0.0."""
        assert percent_change(40, None) == 0.0
        assert percent_change(40, 0) == 0.0

    def test_rounded_to_two_decimals(self) -> None:
        """Test rounding of the percentage."""
        assert percent_change(62, 44) == 40.91
        assert percent_change(30, 60) == -50.0


class TestShouldEscalate:
    """Test the escalation gate."""

    def test_rank_increase_escalates(self) -> None:
        """Test strictly increasing ranks."""
        assert should_escalate(RiskLevel.MEDIUM, RiskLevel.CRITICAL)
        assert should_escalate("Low", "High")

    def test_same_or_lower_rank_does_not(self) -> None:
        """Test that repeats and decreases never escalate."""
        assert not should_escalate(RiskLevel.CRITICAL, RiskLevel.CRITICAL)
        assert not should_escalate("High", "Medium")

    def test_missing_previous_counts_as_low(self) -> None:
        """Test first calculations."""
        assert level_rank(None) == 0
        assert should_escalate(None, RiskLevel.MEDIUM)
        assert not should_escalate(None, RiskLevel.LOW)


class TestDetectRapidIncreases:
    """Test rapid increase detection."""

    def test_flags_jump_within_gap(self) -> None:
        """Test a 20 point jump over three days."""
        flagged = detect_rapid_increases([point("a", 30, 0), point("a", 50, 3)])
        assert len(flagged) == 1
        assert flagged[0].increase == 20
        assert flagged[0].days_between == 3

    def test_threshold_is_exclusive(self) -> None:
        """Test that exactly 15 points is not flagged."""
        assert detect_rapid_increases([point("a", 30, 0), point("a", 45, 1)]) == []

    def test_gap_too_long(self) -> None:
        """Test that jumps over more than seven days are ignored."""
        assert detect_rapid_increases([point("a", 30, 0), point("a", 70, 8)]) == []

    def test_most_recent_pair_per_student(self) -> None:
        """Test one result per student, ordered by increase."""
        flagged = detect_rapid_increases(
            [
                point("a", 70, 6),
                point("a", 10, 0),
                point("a", 30, 2),
                point("b", 20, 0),
                point("b", 45, 1),
            ]
        )
        assert [(f.student_id, f.increase) for f in flagged] == [("a", 40), ("b", 25)]
        latest_a = next(f for f in flagged if f.student_id == "a")
        assert (latest_a.previous_score, latest_a.current_score) == (30, 70)

    def test_custom_threshold(self) -> None:
        """Test overriding the threshold and gap."""
        flagged = detect_rapid_increases(
            [point("a", 30, 0), point("a", 41, 10)],
            threshold=10,
            max_gap=timedelta(days=14),
        )
        assert len(flagged) == 1
        assert flagged[0].to_dict()["detected_at"] == (START + timedelta(days=10)).isoformat()
