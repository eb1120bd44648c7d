# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dropout risk scoring.

This package contains the pure scoring rules:
- factors: seven rule-based sub-scores from raw student signals
- combiner: weighted total, level, recommendations, dropout prediction
- trend: trend, percent change, escalation gate, rapid increases

The recalculation pipeline that persists results and raises alerts lives
in src.core.risk.service and is imported from there directly.

Example:
    >>> from src.core.risk import StudentSignals, aggregate, combine
    >>> result = combine(aggregate(StudentSignals(student_id="s1", attendance_percentage=50)))
    >>> result.level
    <RiskLevel.LOW: 'Low'>
"""

from src.core.risk.combiner import (
    RiskLevel,
    RiskResult,
    combine,
    level_for_score,
    predict_dropout,
    recommend,
    weighted_total,
)
from src.core.risk.factors import (
    Factor,
    FactorAssessment,
    FactorResult,
    StudentSignals,
    aggregate,
)
from src.core.risk.trend import (
    RapidIncrease,
    RiskTrend,
    compute_trend,
    detect_rapid_increases,
    percent_change,
    should_escalate,
)

__all__ = [
    "Factor",
    "FactorAssessment",
    "FactorResult",
    "RapidIncrease",
    "RiskLevel",
    "RiskResult",
    "RiskTrend",
    "StudentSignals",
    "aggregate",
    "combine",
    "compute_trend",
    "detect_rapid_increases",
    "level_for_score",
    "percent_change",
    "predict_dropout",
    "recommend",
    "should_escalate",
    "weighted_total",
]
