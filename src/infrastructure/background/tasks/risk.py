# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk recalculation background jobs.

Actors:
- sweep_daily_risk: recalculate every active student (daily cron)
- sweep_rapid_increases: flag sharp score jumps (every few hours)
- recalculate_students: recalculate an explicit list of students

The actors are declared on the broker passed to RiskJobs and delegate to
a RiskService built once per worker process. Log records carry the actor
and message id bound by JobContextMiddleware.
"""

import logging
from typing import TYPE_CHECKING, Any

import dramatiq

from src.infrastructure.background.broker import Queues
from src.infrastructure.background.tasks.base import run_async

if TYPE_CHECKING:
    from src.core.risk.service import RiskService

logger = logging.getLogger(__name__)

SWEEP_TIME_LIMIT_MS = 2 * 60 * 60 * 1000
CHECK_TIME_LIMIT_MS = 10 * 60 * 1000


class RiskJobs:
    """Dramatiq actors for the periodic risk sweeps.

    Attributes:
        service: Risk service the jobs delegate to.
        sweep_daily_risk: Daily recalculation actor.
        sweep_rapid_increases: Rapid increase check actor.
        recalculate_students: Targeted recalculation actor.
    """

    def __init__(self, broker: dramatiq.Broker, service: "RiskService") -> None:
        self.service = service

        # A failed sweep is retried once; per-student failures never fail it
        self.sweep_daily_risk = dramatiq.actor(
            self._sweep_daily_risk,
            actor_name="sweep_daily_risk",
            queue_name=Queues.RISK,
            broker=broker,
            max_retries=1,
            time_limit=SWEEP_TIME_LIMIT_MS,
        )
        self.sweep_rapid_increases = dramatiq.actor(
            self._sweep_rapid_increases,
            actor_name="sweep_rapid_increases",
            queue_name=Queues.RISK,
            broker=broker,
            max_retries=1,
            time_limit=CHECK_TIME_LIMIT_MS,
        )
        self.recalculate_students = dramatiq.actor(
            self._recalculate_students,
            actor_name="recalculate_students",
            queue_name=Queues.RISK,
            broker=broker,
            max_retries=2,
            time_limit=SWEEP_TIME_LIMIT_MS,
        )

    def _sweep_daily_risk(self) -> dict[str, Any]:
        return run_async(self.service.run_daily_sweep())

    def _sweep_rapid_increases(self) -> list[dict[str, Any]]:
        increases = run_async(self.service.find_rapid_increases())
        return [increase.to_dict() for increase in increases]

    def _recalculate_students(self, student_ids: list[str]) -> dict[str, Any]:
        logger.info("Recalculating %d requested students", len(student_ids))
        summary = run_async(self.service.recalculate_students(student_ids))
        return summary.to_dict(include_results=True)
