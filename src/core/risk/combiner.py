# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk combiner.

Weighted-sums the seven factor scores into a 0-100 total, maps the total
to a risk level, and derives recommendations and a dropout prediction.

    total_score = round_half_up(sum(score[f] * WEIGHTS[f]))
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from src.core.risk.factors import Factor, FactorAssessment, FactorResult

WEIGHTS: dict[Factor, Decimal] = {
    Factor.ATTENDANCE: Decimal("0.25"),
    Factor.ACADEMIC: Decimal("0.25"),
    Factor.FINANCIAL: Decimal("0.15"),
    Factor.BEHAVIORAL: Decimal("0.10"),
    Factor.HEALTH: Decimal("0.10"),
    Factor.DISTANCE: Decimal("0.10"),
    Factor.FAMILY: Decimal("0.05"),
}

MODEL_VERSION = "1.0"


class RiskLevel(str, Enum):
    """Categorical risk bucket derived from the total score."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# Ordered from the highest lower bound down
LEVEL_THRESHOLDS: tuple[tuple[int, RiskLevel], ...] = (
    (80, RiskLevel.CRITICAL),
    (60, RiskLevel.HIGH),
    (30, RiskLevel.MEDIUM),
    (0, RiskLevel.LOW),
)


def level_for_score(score: int) -> RiskLevel:
    """Map a total score to its risk level."""
    for lower_bound, level in LEVEL_THRESHOLDS:
        if score >= lower_bound:
            return level
    return RiskLevel.LOW


def weighted_total(scores: dict[Factor, int]) -> int:
    """Weighted sum of factor scores, rounded half up."""
    total = sum(
        (Decimal(scores.get(name, 0)) * weight for name, weight in WEIGHTS.items()),
        Decimal(0),
    )
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Recommendation:
    """An intervention suggested by a factor score.

    Attributes:
        priority: High or Medium.
        category: Factor area the action addresses.
        action: Short action name.
        description: What staff should do.
    """

    priority: str
    category: str
    action: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {
            "priority": self.priority,
            "category": self.category,
            "action": self.action,
            "description": self.description,
        }


@dataclass(frozen=True)
class RecommendationRule:
    """Emit recommendations when above < factor score <= at_most."""

    factor: Factor
    above: int
    recommendations: tuple[Recommendation, ...]
    at_most: int | None = None

    def applies(self, score: int) -> bool:
        if score <= self.above:
            return False
        return self.at_most is None or score <= self.at_most


RECOMMENDATION_RULES: tuple[RecommendationRule, ...] = (
    RecommendationRule(
        Factor.ATTENDANCE,
        above=50,
        recommendations=(
            Recommendation(
                "High",
                "Attendance",
                "Immediate Parent Meeting",
                "Schedule urgent meeting with parents to discuss attendance issues",
            ),
            Recommendation(
                "High",
                "Attendance",
                "Daily Attendance Monitoring",
                "Implement daily check-ins and follow-ups for absences",
            ),
        ),
    ),
    RecommendationRule(
        Factor.ATTENDANCE,
        above=30,
        at_most=50,
        recommendations=(
            Recommendation(
                "Medium",
                "Attendance",
                "Parent Communication",
                "Send weekly attendance reports to parents",
            ),
        ),
    ),
    RecommendationRule(
        Factor.ACADEMIC,
        above=50,
        recommendations=(
            Recommendation(
                "High",
                "Academic",
                "Remedial Classes",
                "Enroll student in after-school remedial classes",
            ),
            Recommendation(
                "High",
                "Academic",
                "Peer Tutoring",
                "Assign peer tutor for struggling subjects",
            ),
        ),
    ),
    RecommendationRule(
        Factor.FINANCIAL,
        above=50,
        recommendations=(
            Recommendation(
                "High",
                "Financial",
                "Financial Aid Assessment",
                "Evaluate eligibility for scholarships and financial assistance",
            ),
        ),
    ),
    RecommendationRule(
        Factor.BEHAVIORAL,
        above=40,
        recommendations=(
            Recommendation(
                "High",
                "Behavioral",
                "Counseling Sessions",
                "Schedule regular counseling sessions to address behavioral issues",
            ),
        ),
    ),
    RecommendationRule(
        Factor.HEALTH,
        above=40,
        recommendations=(
            Recommendation(
                "Medium",
                "Health",
                "Health Assessment",
                "Refer to school health services for medical evaluation",
            ),
        ),
    ),
)

PRIORITY_ORDER = {"High": 0, "Medium": 1, "Low": 2}


def recommend(scores: dict[Factor, int]) -> list[Recommendation]:
    """Build the recommendation list, High priority first."""
    selected = [
        recommendation
        for rule in RECOMMENDATION_RULES
        if rule.applies(scores.get(rule.factor, 0))
        for recommendation in rule.recommendations
    ]
    return sorted(selected, key=lambda r: PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER)))


@dataclass(frozen=True)
class DropoutPrediction:
    """Dropout timeline band.

    Attributes:
        timeline: Expected time to dropout.
        probability: Probability band.
        urgency: Urgency label.
        months_ahead: Midpoint of the timeline in months, None for low risk.
    """

    timeline: str
    probability: str
    urgency: str
    months_ahead: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeline": self.timeline,
            "probability": self.probability,
            "urgency": self.urgency,
        }


DROPOUT_BANDS: tuple[tuple[int, DropoutPrediction], ...] = (
    (80, DropoutPrediction("1-3 months", "85-95%", "Critical", months_ahead=2)),
    (60, DropoutPrediction("3-6 months", "60-75%", "High", months_ahead=4)),
    (40, DropoutPrediction("6-12 months", "30-50%", "Medium", months_ahead=9)),
)
LOW_RISK_PREDICTION = DropoutPrediction("Low risk", "<20%", "Low")


def predict_dropout(score: int) -> DropoutPrediction:
    """Return the dropout band for a total score."""
    for lower_bound, prediction in DROPOUT_BANDS:
        if score >= lower_bound:
            return prediction
    return LOW_RISK_PREDICTION


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def predicted_dropout_date(prediction: DropoutPrediction, calculated_at: datetime) -> datetime | None:
    """Midpoint date of the predicted timeline, or None for low risk."""
    if prediction.months_ahead is None:
        return None
    return add_months(calculated_at, prediction.months_ahead)


ACADEMIC_YEAR_START_MONTH = 4


def academic_period(moment: datetime) -> str:
    """Academic year label such as "2025-2026". Years start in April."""
    if moment.month >= ACADEMIC_YEAR_START_MONTH:
        return f"{moment.year}-{moment.year + 1}"
    return f"{moment.year - 1}-{moment.year}"


@dataclass
class RiskResult:
    """Combined risk for one student.

    Attributes:
        student_id: Student identifier.
        total_score: Weighted total in the range 0-100.
        level: Risk level for total_score.
        factors: Per-factor results.
        recommendations: Suggested interventions.
        prediction: Dropout timeline band.
        data_completeness_percent: Share of signals that were present.
        invalid_fields: Signals dropped because they failed validation.
    """

    student_id: str
    total_score: int
    level: RiskLevel
    factors: dict[Factor, FactorResult]
    recommendations: list[Recommendation] = field(default_factory=list)
    prediction: DropoutPrediction = LOW_RISK_PREDICTION
    data_completeness_percent: float = 0.0
    invalid_fields: list[str] = field(default_factory=list)

    @property
    def factor_scores(self) -> dict[str, int]:
        return {name.value: result.score for name, result in self.factors.items()}

    def breakdown(self) -> dict[str, dict[str, Any]]:
        """Per-factor score, weight and details."""
        return {
            name.value: {
                "score": result.score,
                "weight": float(WEIGHTS[name]),
                "details": result.details,
            }
            for name, result in self.factors.items()
        }


def combine(assessment: FactorAssessment) -> RiskResult:
    """Combine factor results into a total score and level.

    Args:
        assessment: Output of factors.aggregate().

    Returns:
        RiskResult for the student.
    """
    scores = assessment.scores
    total = weighted_total(scores)
    return RiskResult(
        student_id=assessment.student_id,
        total_score=total,
        level=level_for_score(total),
        factors=assessment.factors,
        recommendations=recommend(scores),
        prediction=predict_dropout(total),
        data_completeness_percent=assessment.data_completeness_percent,
        invalid_fields=assessment.invalid_fields,
    )
