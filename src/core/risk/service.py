# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk recalculation service.

Runs the per-student pipeline:

    previous profile -> signals -> factors -> combine -> trend
        -> snapshot -> escalation alert -> profile

Each student's pipeline runs under a per-student lock held across worker
threads and processes (see src.core.risk.locks), so the previous level is
read before the new one is computed and the profile is written last.
Sweeps recalculate many students concurrently, bounded by
SCHEDULER_MAX_CONCURRENCY; a failing student is counted and logged without
stopping the sweep.

Example:
    service = RiskService(provider, risk_repository, dispatcher, settings.scheduler)
    summary = await service.run_daily_sweep()
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from src.core.config.settings import SchedulerSettings
from src.core.exceptions import ValidationError
from src.core.risk.combiner import (
    MODEL_VERSION,
    RiskLevel,
    RiskResult,
    academic_period,
    add_months,
    combine,
    predicted_dropout_date,
)
from src.core.risk.factors import StudentSignals, aggregate
from src.core.risk.locks import LocalStudentLocks, StudentLocks
from src.core.risk.trend import (
    RapidIncrease,
    RiskTrend,
    compute_trend,
    detect_rapid_increases,
    percent_change,
    should_escalate,
)
from src.infrastructure.database.models.base import new_id
from src.infrastructure.database.models.risk import RiskSnapshot
from src.infrastructure.database.repositories.risk import RiskRepository
from src.utils.datetime import utc_now

if TYPE_CHECKING:
    from src.domains.students.provider import StudentDataProvider
    from src.infrastructure.notifications.service import NotificationDispatcher

logger = logging.getLogger(__name__)

REPORT_PERIOD_MONTHS = {
    "month": 1,
    "quarter": 3,
    "year": 12,
}


@dataclass
class RecalculationResult:
    """Outcome of one student's recalculation.

    Attributes:
        student_id: Student identifier.
        total_score: New total score.
        level: New risk level.
        previous_score: Score before this calculation, if any.
        previous_level: Level before this calculation, if any.
        trend: Direction of the change.
        percent_change: Relative change in percent.
        escalated: Whether the level rank went up.
        notifications_sent: Escalation notifications created.
        snapshot_id: Id of the stored snapshot.
        data_completeness_percent: Share of signals that were present.
    """

    student_id: str
    total_score: int
    level: RiskLevel
    previous_score: int | None
    previous_level: str | None
    trend: RiskTrend
    percent_change: float
    escalated: bool
    notifications_sent: int
    snapshot_id: str
    data_completeness_percent: float

    @property
    def level_changed(self) -> bool:
        return self.previous_level is not None and self.previous_level != self.level.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "total_score": self.total_score,
            "level": self.level.value,
            "previous_score": self.previous_score,
            "previous_level": self.previous_level,
            "trend": self.trend.value,
            "percent_change": self.percent_change,
            "escalated": self.escalated,
            "notifications_sent": self.notifications_sent,
            "snapshot_id": self.snapshot_id,
            "data_completeness_percent": self.data_completeness_percent,
        }


@dataclass
class SweepSummary:
    """Counters of a batch recalculation."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    level_changes: int = 0
    escalations: int = 0
    results: list[RecalculationResult] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    completed_at: datetime | None = None

    def to_dict(self, include_results: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "level_changes": self.level_changes,
            "escalations": self.escalations,
            "errors": self.errors,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_results:
            data["results"] = [r.to_dict() for r in self.results]
        return data


def summarize_levels(rows: Iterable[tuple[str, str, int, datetime]]) -> list[dict[str, Any]]:
    """Group (student_id, level, score, calculated_at) rows by day and level.

    Returns:
        One entry per day, oldest first, with the level distribution and
        the average score of each level.
    """
    days: dict[str, dict[str, list[int]]] = defaultdict(lambda: defaultdict(list))
    for _, level, score, calculated_at in rows:
        days[calculated_at.date().isoformat()][level].append(score)

    report = []
    for day in sorted(days):
        levels = days[day]
        all_scores = [s for scores in levels.values() for s in scores]
        report.append({
            "date": day,
            "risk_distribution": [
                {
                    "level": level.value,
                    "count": len(levels[level.value]),
                    "average_score": round(sum(levels[level.value]) / len(levels[level.value]), 2),
                }
                for level in RiskLevel
                if levels.get(level.value)
            ],
            "total": len(all_scores),
            "average_score": round(sum(all_scores) / len(all_scores), 2),
        })
    return report


class RiskService:
    """Recalculates student risk and raises escalation alerts.

    Attributes:
        provider: Source of student signals and recipients.
        repository: Risk profile and snapshot persistence.
        dispatcher: Notification dispatcher, or None to skip alerts.
        settings: Sweep concurrency and rapid-increase settings.
        locks: Per-student locks around the pipeline; process-local by default.
    """

    def __init__(
        self,
        provider: "StudentDataProvider",
        repository: RiskRepository,
        dispatcher: "NotificationDispatcher | None",
        settings: SchedulerSettings,
        clock: Callable[[], datetime] = utc_now,
        locks: StudentLocks | None = None,
    ) -> None:
        self.provider = provider
        self.repository = repository
        self.dispatcher = dispatcher
        self.settings = settings
        self.locks = locks if locks is not None else LocalStudentLocks()
        self._clock = clock

    async def _load_signals(self, student_id: str) -> StudentSignals:
        try:
            return await self.provider.get_signals(student_id)
        except ValidationError as e:
            logger.warning(
                "Invalid signals for student %s, using defaults: %s",
                student_id,
                e.message,
            )
            return StudentSignals(student_id=student_id, invalid_fields=list(e.fields))

    async def recalculate_student(self, student_id: str) -> RecalculationResult:
        """Recalculate one student's risk.

        Args:
            student_id: Student identifier.

        Returns:
            RecalculationResult for the student.

        Raises:
            NotFoundError: If the student cannot be located.
            LockTimeoutError: If another run keeps the student locked too long.
        """
        async with self.locks.hold(student_id):
            previous = await self.repository.get_profile(student_id)
            previous_score = previous.total_score if previous else None
            previous_level = previous.level if previous else None

            signals = await self._load_signals(student_id)
            result = combine(aggregate(signals))
            now = self._clock()

            trend = compute_trend(result.total_score, previous_score)
            change = percent_change(result.total_score, previous_score)

            snapshot = self._build_snapshot(result, trend, previous_score, change, now)
            await self.repository.save_snapshot(snapshot)

            escalated = should_escalate(previous_level, result.level)
            notifications_sent = 0
            if escalated:
                notifications_sent = await self._escalate(
                    student_id,
                    previous_level or RiskLevel.LOW.value,
                    result,
                )

            await self.repository.upsert_profile(student_id, {
                "total_score": result.total_score,
                "level": result.level.value,
                "factor_scores": result.factor_scores,
                "dropout_probability_band": result.prediction.probability,
                "predicted_timeline": result.prediction.timeline,
                "urgency": result.prediction.urgency,
                "predicted_dropout_date": predicted_dropout_date(result.prediction, now),
                "last_calculated_at": now,
            })

        logger.debug(
            "Recalculated student %s: %d (%s), trend %s",
            student_id,
            result.total_score,
            result.level.value,
            trend.value,
        )
        return RecalculationResult(
            student_id=student_id,
            total_score=result.total_score,
            level=result.level,
            previous_score=previous_score,
            previous_level=previous_level,
            trend=trend,
            percent_change=change,
            escalated=escalated,
            notifications_sent=notifications_sent,
            snapshot_id=snapshot.id,
            data_completeness_percent=result.data_completeness_percent,
        )

    def _build_snapshot(
        self,
        result: RiskResult,
        trend: RiskTrend,
        previous_score: int | None,
        change: float,
        now: datetime,
    ) -> RiskSnapshot:
        return RiskSnapshot(
            id=new_id(),
            student_id=result.student_id,
            academic_period=academic_period(now),
            total_score=result.total_score,
            level=result.level.value,
            breakdown=result.breakdown(),
            recommendations=[r.to_dict() for r in result.recommendations],
            dropout_prediction=result.prediction.to_dict(),
            trend=trend.value,
            previous_score=previous_score,
            percent_change=change,
            data_completeness_percent=result.data_completeness_percent,
            model_version=MODEL_VERSION,
            calculated_at=now,
        )

    async def _escalate(self, student_id: str, old_level: str, result: RiskResult) -> int:
        logger.info(
            "Risk level of student %s rose from %s to %s",
            student_id,
            old_level,
            result.level.value,
        )
        if self.dispatcher is None:
            return 0

        student = await self.provider.get_student(student_id)
        recipient_ids = await self.provider.list_alert_recipient_ids(student_id)
        notifications = await self.dispatcher.send_escalation_alert(
            student,
            recipient_ids,
            old_level,
            result.level.value,
            result.total_score,
        )
        return len(notifications)

    async def _run_batch(self, student_ids: list[str]) -> SweepSummary:
        semaphore = asyncio.Semaphore(max(self.settings.max_concurrency, 1))

        async def run_one(student_id: str) -> RecalculationResult:
            async with semaphore:
                return await self.recalculate_student(student_id)

        outcomes = await asyncio.gather(
            *(run_one(student_id) for student_id in student_ids),
            return_exceptions=True,
        )

        summary = SweepSummary(total=len(student_ids))
        for student_id, outcome in zip(student_ids, outcomes):
            if isinstance(outcome, Exception):
                summary.failed += 1
                summary.errors.append({"student_id": student_id, "error": str(outcome)})
                logger.error("Risk recalculation failed for student %s: %s", student_id, outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            summary.successful += 1
            summary.results.append(outcome)
            if outcome.level_changed:
                summary.level_changes += 1
            if outcome.escalated:
                summary.escalations += 1

        summary.completed_at = self._clock()
        return summary

    async def recalculate_students(self, student_ids: Iterable[str]) -> SweepSummary:
        """Recalculate a given list of students.

        Duplicates are ignored. Per-student failures are recorded in the
        summary instead of raised.
        """
        ids = list(dict.fromkeys(student_ids))
        summary = await self._run_batch(ids)
        logger.info(
            "Recalculated %d students: %d successful, %d failed",
            summary.total,
            summary.successful,
            summary.failed,
        )
        return summary

    async def run_daily_sweep(self) -> dict[str, Any]:
        """Recalculate every active student.

        Returns:
            {total, successful, failed, level_changes, escalations,
            errors, completed_at}
        """
        student_ids = await self.provider.list_active_student_ids()
        logger.info("Starting daily risk sweep for %d students", len(student_ids))

        summary = await self._run_batch(student_ids)

        logger.info(
            "Daily risk sweep completed: %d total, %d successful, %d failed, "
            "%d level changes, %d escalations",
            summary.total,
            summary.successful,
            summary.failed,
            summary.level_changes,
            summary.escalations,
        )
        return summary.to_dict()

    async def find_rapid_increases(self) -> list[RapidIncrease]:
        """Flag students whose score jumped sharply in the recent window.

        Only logs a warning per flagged student; no notifications are sent.
        """
        since = self._clock() - timedelta(days=self.settings.rapid_increase_window_days)
        points = await self.repository.list_score_points(since)
        increases = detect_rapid_increases(
            points,
            threshold=self.settings.rapid_increase_threshold,
            max_gap=timedelta(days=self.settings.rapid_increase_max_gap_days),
        )
        for increase in increases:
            logger.warning(
                "Rapid risk increase for student %s: %d -> %d (+%d in %d days)",
                increase.student_id,
                increase.previous_score,
                increase.current_score,
                increase.increase,
                increase.days_between,
            )
        logger.info("Rapid increase check found %d students", len(increases))
        return increases

    async def generate_risk_trend_report(self, period: str = "month") -> dict[str, Any]:
        """Per-day level distribution and average score over a period.

        Args:
            period: One of week, month, quarter, year.

        Returns:
            {period, start_date, end_date, data, generated_at}

        Raises:
            ValidationError: If the period is unknown.
        """
        end = self._clock()
        if period == "week":
            start = end - timedelta(days=7)
        elif period in REPORT_PERIOD_MONTHS:
            start = add_months(end, -REPORT_PERIOD_MONTHS[period])
        else:
            raise ValidationError(f"Unknown report period: {period}", fields=["period"])

        rows = await self.repository.list_level_history(start)
        return {
            "period": period,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "data": summarize_levels(rows),
            "generated_at": self._clock().isoformat(),
        }
