# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk factor aggregation.

Converts raw student signals into seven independent sub-scores, each in
the range 0-100. Every rule is an ordered threshold table evaluated by
lookup(), so each factor can be tested on its own.

Factors:
- attendance: attendance percentage bracket + consecutive absences
- academic: overall percentage bracket + failed subjects + trend
- financial: income tier + economic distress + parental education
- behavioral: behavioral issues + lateness + prior dropout attempts
- health: health issues
- distance: distance from school + walking penalty
- family: family problems + sibling count

Missing signals contribute nothing to their factor and lower the data
completeness percentage instead.

Example:
    >>> signals = StudentSignals(student_id="s1", attendance_percentage=50)
    >>> assessment = aggregate(signals)
    >>> assessment.factors[Factor.ATTENDANCE].score
    85
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError


class Factor(str, Enum):
    """Risk factor names, in weight order."""

    ATTENDANCE = "attendance"
    ACADEMIC = "academic"
    FINANCIAL = "financial"
    BEHAVIORAL = "behavioral"
    HEALTH = "health"
    DISTANCE = "distance"
    FAMILY = "family"


class AcademicTrend(str, Enum):
    """Direction of a student's recent academic results."""

    IMPROVING = "Improving"
    STABLE = "Stable"
    DECLINING = "Declining"
    UNKNOWN = "Unknown"


class IncomeTier(str, Enum):
    """Family income tier."""

    BELOW_POVERTY = "BelowPoverty"
    LOW = "Low"
    MIDDLE = "Middle"
    HIGH = "High"


# Labels used by the student records service
INCOME_TIER_ALIASES: dict[str, str] = {
    "Below Poverty Line": IncomeTier.BELOW_POVERTY.value,
    "Low Income": IncomeTier.LOW.value,
    "Middle Income": IncomeTier.MIDDLE.value,
    "High Income": IncomeTier.HIGH.value,
}


class StudentSignals(BaseModel):
    """Raw inputs for one student's risk calculation.

    Every signal is optional. A signal that is absent or fails validation
    is treated as missing.

    Attributes:
        student_id: Student identifier.
        attendance_percentage: Attendance for the current period (0-100).
        consecutive_absences: Current run of consecutive absent days.
        overall_percentage: Overall academic percentage (0-100).
        failed_subjects: Number of failed subjects.
        academic_trend: Direction of recent results.
        income_tier: Family income tier.
        economic_distress: Family reports economic distress.
        low_parental_education: A parent has no formal education.
        behavioral_issues: Recorded behavioral issues.
        lateness_count: Number of late arrivals.
        previous_dropout_attempts: Number of earlier dropout attempts.
        health_issues: Recorded health issues.
        distance_km: Distance from home to school in kilometers.
        transport_mode: How the student travels to school.
        family_problems: Recorded family problems.
        sibling_count: Number of siblings.
        invalid_fields: Fields dropped because they failed validation.
    """

    student_id: str = Field(min_length=1)
    attendance_percentage: float | None = Field(default=None, ge=0, le=100)
    consecutive_absences: int | None = Field(default=None, ge=0)
    overall_percentage: float | None = Field(default=None, ge=0, le=100)
    failed_subjects: int | None = Field(default=None, ge=0)
    academic_trend: AcademicTrend | None = None
    income_tier: IncomeTier | None = None
    economic_distress: bool | None = None
    low_parental_education: bool | None = None
    behavioral_issues: bool | None = None
    lateness_count: int | None = Field(default=None, ge=0)
    previous_dropout_attempts: int | None = Field(default=None, ge=0)
    health_issues: bool | None = None
    distance_km: float | None = Field(default=None, ge=0)
    transport_mode: str | None = None
    family_problems: bool | None = None
    sibling_count: int | None = Field(default=None, ge=0)
    invalid_fields: list[str] = Field(default_factory=list)

    @field_validator("income_tier", mode="before")
    @classmethod
    def _normalize_income_tier(cls, value: Any) -> Any:
        if isinstance(value, str):
            return INCOME_TIER_ALIASES.get(value, value)
        return value

    @classmethod
    def from_payload(cls, student_id: str, payload: dict[str, Any]) -> "StudentSignals":
        """Build signals from an untrusted payload.

        Unknown keys are ignored. Fields that fail validation are dropped
        and listed in invalid_fields rather than failing the whole payload.

        Args:
            student_id: Student identifier.
            payload: Raw signal values keyed by field name.

        Returns:
            Validated signals.
        """
        data = {
            key: value
            for key, value in payload.items()
            if key in SIGNAL_FIELDS
        }
        data["student_id"] = student_id

        invalid: list[str] = []
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            for error in e.errors():
                loc = error.get("loc") or ()
                if loc and loc[0] in SIGNAL_FIELDS and loc[0] not in invalid:
                    invalid.append(str(loc[0]))

        for name in invalid:
            data.pop(name, None)
        data["invalid_fields"] = invalid
        return cls.model_validate(data)


SIGNAL_FIELDS: tuple[str, ...] = (
    "attendance_percentage",
    "consecutive_absences",
    "overall_percentage",
    "failed_subjects",
    "academic_trend",
    "income_tier",
    "economic_distress",
    "low_parental_education",
    "behavioral_issues",
    "lateness_count",
    "previous_dropout_attempts",
    "health_issues",
    "distance_km",
    "transport_mode",
    "family_problems",
    "sibling_count",
)


@dataclass(frozen=True)
class Bracket:
    """One row of a threshold table.

    Attributes:
        threshold: Lower bound for the row. None matches any value.
        points: Risk points added when the row matches.
        label: Optional label recorded in factor details.
        inclusive: Match on value >= threshold instead of value > threshold.
    """

    threshold: float | None
    points: int
    label: str | None = None
    inclusive: bool = True

    def matches(self, value: float) -> bool:
        if self.threshold is None:
            return True
        if self.inclusive:
            return value >= self.threshold
        return value > self.threshold


def lookup(value: float | None, table: tuple[Bracket, ...]) -> Bracket | None:
    """Return the first bracket matching value, or None.

    Tables are ordered from the highest threshold down.
    """
    if value is None:
        return None
    for bracket in table:
        if bracket.matches(value):
            return bracket
    return None


def _points(value: float | None, table: tuple[Bracket, ...]) -> int:
    bracket = lookup(value, table)
    return bracket.points if bracket else 0


ATTENDANCE_BRACKETS = (
    Bracket(95, 0, "Excellent"),
    Bracket(85, 15, "Good"),
    Bracket(75, 35, "Fair"),
    Bracket(60, 60, "Poor"),
    Bracket(None, 85, "Critical"),
)
CONSECUTIVE_ABSENCE_BRACKETS = (
    Bracket(5, 15),
    Bracket(3, 8),
)

ACADEMIC_BRACKETS = (
    Bracket(75, 0, "Excellent"),
    Bracket(60, 20, "Good"),
    Bracket(45, 45, "Fair"),
    Bracket(33, 70, "Poor"),
    Bracket(None, 90, "Critical"),
)
FAILED_SUBJECT_BRACKETS = (
    Bracket(3, 10),
    Bracket(1, 5),
)
ACADEMIC_TREND_POINTS: dict[AcademicTrend, int] = {
    AcademicTrend.DECLINING: 10,
    AcademicTrend.IMPROVING: -5,
}

INCOME_TIER_POINTS: dict[IncomeTier, int] = {
    IncomeTier.BELOW_POVERTY: 80,
    IncomeTier.LOW: 50,
    IncomeTier.MIDDLE: 20,
    IncomeTier.HIGH: 0,
}
ECONOMIC_DISTRESS_POINTS = 20
LOW_PARENTAL_EDUCATION_POINTS = 10

BEHAVIORAL_ISSUE_POINTS = 60
LATENESS_BRACKETS = (
    Bracket(20, 20, inclusive=False),
    Bracket(10, 10, inclusive=False),
)
DROPOUT_ATTEMPT_POINTS = 20

HEALTH_ISSUE_POINTS = 60

DISTANCE_BRACKETS = (
    Bracket(10, 50, inclusive=False),
    Bracket(5, 30, inclusive=False),
    Bracket(2, 15, inclusive=False),
)
WALKING_MODE = "walk"
WALKING_DISTANCE_BRACKETS = (
    Bracket(3, 20, inclusive=False),
)

FAMILY_PROBLEM_POINTS = 70
SIBLING_BRACKETS = (
    Bracket(4, 15, inclusive=False),
    Bracket(2, 10, inclusive=False),
)

MAX_FACTOR_SCORE = 100


@dataclass
class FactorResult:
    """Score and explanation for one factor.

    Attributes:
        factor: Which factor this is.
        score: Sub-score in the range 0-100.
        details: Inputs and labels that produced the score.
    """

    factor: Factor
    score: int
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "details": self.details}


@dataclass
class FactorAssessment:
    """All seven factor results for one student."""

    student_id: str
    factors: dict[Factor, FactorResult]
    data_completeness_percent: float
    invalid_fields: list[str] = field(default_factory=list)

    @property
    def scores(self) -> dict[Factor, int]:
        return {name: result.score for name, result in self.factors.items()}


def _clamp(score: int) -> int:
    return max(0, min(score, MAX_FACTOR_SCORE))


def attendance_factor(signals: StudentSignals) -> FactorResult:
    """Attendance percentage bracket plus consecutive absences."""
    details: dict[str, Any] = {"attendance_percentage": signals.attendance_percentage}
    score = 0

    bracket = lookup(signals.attendance_percentage, ATTENDANCE_BRACKETS)
    if bracket:
        score += bracket.points
        details["level"] = bracket.label
    else:
        details["level"] = "Unknown"

    absence_points = _points(signals.consecutive_absences, CONSECUTIVE_ABSENCE_BRACKETS)
    if absence_points:
        score += absence_points
        details["consecutive_absences"] = signals.consecutive_absences

    return FactorResult(Factor.ATTENDANCE, _clamp(score), details)


def academic_factor(signals: StudentSignals) -> FactorResult:
    """Overall percentage bracket, failed subjects and trend adjustment."""
    details: dict[str, Any] = {
        "overall_percentage": signals.overall_percentage,
        "failed_subjects": signals.failed_subjects,
        "trend": signals.academic_trend.value if signals.academic_trend else None,
    }
    score = 0

    bracket = lookup(signals.overall_percentage, ACADEMIC_BRACKETS)
    if bracket:
        score += bracket.points
        details["level"] = bracket.label
    else:
        details["level"] = "Unknown"

    score += _points(signals.failed_subjects, FAILED_SUBJECT_BRACKETS)
    if signals.academic_trend:
        score += ACADEMIC_TREND_POINTS.get(signals.academic_trend, 0)

    return FactorResult(Factor.ACADEMIC, _clamp(score), details)


def financial_factor(signals: StudentSignals) -> FactorResult:
    """Income tier, economic distress and parental education."""
    details: dict[str, Any] = {
        "income_tier": signals.income_tier.value if signals.income_tier else None,
    }
    score = INCOME_TIER_POINTS.get(signals.income_tier, 0) if signals.income_tier else 0

    if signals.economic_distress:
        score += ECONOMIC_DISTRESS_POINTS
        details["economic_distress"] = True
    if signals.low_parental_education:
        score += LOW_PARENTAL_EDUCATION_POINTS
        details["low_parental_education"] = True

    return FactorResult(Factor.FINANCIAL, _clamp(score), details)


def behavioral_factor(signals: StudentSignals) -> FactorResult:
    """Behavioral issues, lateness and each prior dropout attempt."""
    details: dict[str, Any] = {"lateness_count": signals.lateness_count}
    score = 0

    if signals.behavioral_issues:
        score += BEHAVIORAL_ISSUE_POINTS
        details["behavioral_issues"] = True

    score += _points(signals.lateness_count, LATENESS_BRACKETS)

    if signals.previous_dropout_attempts:
        score += DROPOUT_ATTEMPT_POINTS * signals.previous_dropout_attempts
        details["previous_dropout_attempts"] = signals.previous_dropout_attempts

    return FactorResult(Factor.BEHAVIORAL, _clamp(score), details)


def health_factor(signals: StudentSignals) -> FactorResult:
    """Health issues flag."""
    details: dict[str, Any] = {}
    score = 0
    if signals.health_issues:
        score += HEALTH_ISSUE_POINTS
        details["health_issues"] = True
    return FactorResult(Factor.HEALTH, _clamp(score), details)


def distance_factor(signals: StudentSignals) -> FactorResult:
    """Distance tiers plus a penalty for walking long distances."""
    details: dict[str, Any] = {
        "distance_km": signals.distance_km,
        "transport_mode": signals.transport_mode,
    }
    score = _points(signals.distance_km, DISTANCE_BRACKETS)

    if signals.transport_mode and signals.transport_mode.strip().lower() == WALKING_MODE:
        walking_points = _points(signals.distance_km, WALKING_DISTANCE_BRACKETS)
        if walking_points:
            score += walking_points
            details["walking_penalty"] = walking_points

    return FactorResult(Factor.DISTANCE, _clamp(score), details)


def family_factor(signals: StudentSignals) -> FactorResult:
    """Family problems flag plus sibling count tiers."""
    details: dict[str, Any] = {"sibling_count": signals.sibling_count}
    score = 0
    if signals.family_problems:
        score += FAMILY_PROBLEM_POINTS
        details["family_problems"] = True
    score += _points(signals.sibling_count, SIBLING_BRACKETS)
    return FactorResult(Factor.FAMILY, _clamp(score), details)


FACTOR_RULES = {
    Factor.ATTENDANCE: attendance_factor,
    Factor.ACADEMIC: academic_factor,
    Factor.FINANCIAL: financial_factor,
    Factor.BEHAVIORAL: behavioral_factor,
    Factor.HEALTH: health_factor,
    Factor.DISTANCE: distance_factor,
    Factor.FAMILY: family_factor,
}


def data_completeness(signals: StudentSignals) -> float:
    """Percentage of tracked signals that are present, to two decimals."""
    present = sum(
        1 for name in SIGNAL_FIELDS
        if getattr(signals, name) not in (None, "")
    )
    return round(present / len(SIGNAL_FIELDS) * 100, 2)


def aggregate(signals: StudentSignals) -> FactorAssessment:
    """Compute all seven factors for one student.

    Args:
        signals: Validated student signals.

    Returns:
        FactorAssessment with one result per factor.
    """
    return FactorAssessment(
        student_id=signals.student_id,
        factors={name: rule(signals) for name, rule in FACTOR_RULES.items()},
        data_completeness_percent=data_completeness(signals),
        invalid_fields=list(signals.invalid_fields),
    )
