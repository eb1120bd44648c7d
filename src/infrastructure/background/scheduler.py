# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Periodic risk sweep scheduling.

APScheduler decides when a sweep is due; the scheduler process only
sends the sweep's Dramatiq message. The sweep itself runs in a worker.

Sweeps are registered under their actor name, so a task id is stable
across restarts ("sweep_daily_risk"). Runs missed while the process was
down are coalesced into one run if they are within the misfire grace
period, and at most one run of a task is in flight in this process.

Example:
    scheduler = DramatiqScheduler(broker, timezone="UTC")
    scheduler.add_cron_task(
        name="Daily Risk Sweep",
        actor_name="sweep_daily_risk",
        cron_expression="0 2 * * *",
    )
    await scheduler.start()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import dramatiq
import redis
from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from dramatiq.errors import ActorNotFound, BrokerError

from src.core.config.settings import SchedulerSettings
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

DEFAULT_MISFIRE_GRACE_SECONDS = 3600


@dataclass
class ScheduledTask:
    """A sweep actor and the trigger that enqueues it.

    Attributes:
        id: Task identifier, the actor name unless given explicitly.
        name: Human-readable task name.
        actor_name: Dramatiq actor sent on each run.
        trigger: APScheduler trigger deciding when the task runs.
        args: Positional arguments for the actor.
        kwargs: Keyword arguments for the actor.
        enabled: Disabled tasks stay registered but are paused.
        last_run: When the actor message was last sent.
        next_run: Next fire time, None while paused or before start().
        run_count: Messages sent.
        error_count: Runs whose message could not be sent.
        missed_count: Fire times skipped past the misfire grace period.
        last_error: Error of the most recent failed run.
    """

    name: str
    actor_name: str
    trigger: BaseTrigger
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0
    missed_count: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.actor_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "trigger": str(self.trigger),
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "missed_count": self.missed_count,
            "last_error": self.last_error,
        }


class DramatiqScheduler:
    """Sends sweep actor messages on cron or interval triggers.

    Tasks can be added before start(); they are handed to APScheduler when
    it starts. A failed send is counted on the task and logged, never
    raised into APScheduler, so the next fire time still happens.

    Attributes:
        _broker: Broker the actors are declared on.
        _scheduler: APScheduler instance while running.
        _tasks: Scheduled tasks by id.
    """

    def __init__(
        self,
        broker: dramatiq.Broker,
        timezone: str = "UTC",
        misfire_grace_seconds: int = DEFAULT_MISFIRE_GRACE_SECONDS,
    ) -> None:
        """Initialize the scheduler.

        Args:
            broker: Broker the scheduled actors are declared on.
            timezone: Timezone for cron expressions.
            misfire_grace_seconds: How late a run may start and still happen.
        """
        self._broker = broker
        self._timezone = timezone
        self._misfire_grace_seconds = misfire_grace_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _register(self, task: ScheduledTask) -> None:
        if self._scheduler is None:
            return
        job = self._scheduler.add_job(
            self.run_task,
            trigger=task.trigger,
            args=[task.id],
            id=task.id,
            name=task.name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=self._misfire_grace_seconds,
        )
        if task.enabled:
            task.next_run = job.next_run_time
        else:
            job.pause()
            task.next_run = None

    def _add(self, task: ScheduledTask) -> ScheduledTask:
        if task.id in self._tasks:
            logger.warning("Replacing scheduled task %s", task.id)
        self._tasks[task.id] = task
        self._register(task)
        return task

    def add_cron_task(
        self,
        name: str,
        actor_name: str,
        cron_expression: str,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        task_id: str = "",
    ) -> ScheduledTask:
        """Schedule an actor with a five-field cron expression.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to send.
            cron_expression: minute hour day month weekday.
            args: Actor arguments.
            kwargs: Actor keyword arguments.
            enabled: Whether the task starts enabled.
            task_id: Explicit id, defaults to the actor name.

        Returns:
            The scheduled task.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        if len(cron_expression.split()) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        task = self._add(
            ScheduledTask(
                name=name,
                actor_name=actor_name,
                trigger=CronTrigger.from_crontab(cron_expression, timezone=self._timezone),
                args=args,
                kwargs=kwargs or {},
                id=task_id,
                enabled=enabled,
            )
        )
        logger.info("Scheduled %s (%s) at cron %s", task.name, actor_name, cron_expression)
        return task

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        hours: int = 0,
        minutes: int = 0,
        seconds: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        task_id: str = "",
    ) -> ScheduledTask:
        """Schedule an actor at a fixed interval.

        Raises:
            ValueError: If the interval is not positive.
        """
        if hours * 3600 + minutes * 60 + seconds <= 0:
            raise ValueError(f"Interval for {name} must be positive")

        task = self._add(
            ScheduledTask(
                name=name,
                actor_name=actor_name,
                trigger=IntervalTrigger(hours=hours, minutes=minutes, seconds=seconds, timezone=self._timezone),
                args=args,
                kwargs=kwargs or {},
                id=task_id,
                enabled=enabled,
            )
        )
        logger.info("Scheduled %s (%s) every %dh %dm %ds", task.name, actor_name, hours, minutes, seconds)
        return task

    async def run_task(self, task_id: str) -> bool:
        """Send a task's actor message now.

        Called by APScheduler on each fire time; can also be called
        directly to trigger a sweep out of schedule.

        Args:
            task_id: ID of the task to run.

        Returns:
            True if the message was sent.
        """
        task = self._tasks.get(task_id)
        if task is None or not task.enabled:
            return False

        try:
            actor = self._broker.get_actor(task.actor_name)
            message = actor.send(*task.args, **task.kwargs)
        except (ActorNotFound, BrokerError, redis.RedisError) as e:
            task.error_count += 1
            task.last_error = str(e)
            logger.error("Scheduled task %s could not be sent: %s", task.name, e)
            return False

        task.last_run = utc_now()
        task.run_count += 1
        task.last_error = None
        if self._scheduler is not None:
            job = self._scheduler.get_job(task_id)
            task.next_run = job.next_run_time if job else None

        logger.info("Sent %s (message %s)", task.actor_name, message.message_id)
        return True

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        task = self._tasks.get(event.job_id)
        if task is None:
            return
        task.missed_count += 1
        logger.warning(
            "Scheduled task %s missed its run at %s",
            task.name,
            event.scheduled_run_time,
        )

    def remove_task(self, task_id: str) -> bool:
        """Remove a task. Returns False if it does not exist."""
        if self._tasks.pop(task_id, None) is None:
            return False

        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("Job %s was not registered with APScheduler", task_id)

        logger.info("Removed scheduled task %s", task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        """Resume a paused task. Returns False if it does not exist."""
        task = self._tasks.get(task_id)
        if task is None:
            return False

        task.enabled = True
        if self._scheduler is not None:
            try:
                job = self._scheduler.resume_job(task_id)
            except JobLookupError:
                self._register(task)
            else:
                task.next_run = job.next_run_time if job else None
        return True

    def disable_task(self, task_id: str) -> bool:
        """Pause a task. Returns False if it does not exist."""
        task = self._tasks.get(task_id)
        if task is None:
            return False

        task.enabled = False
        task.next_run = None
        if self._scheduler is not None:
            try:
                self._scheduler.pause_job(task_id)
            except JobLookupError:
                logger.debug("Job %s was not registered with APScheduler", task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start APScheduler and register every task added so far."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._scheduler.start()
        for task in self._tasks.values():
            self._register(task)

        logger.info("Scheduler started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        """Stop APScheduler. Tasks are kept and re-registered on start()."""
        if self._scheduler is None:
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        for task in self._tasks.values():
            task.next_run = None
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        tasks = self._tasks.values()
        return {
            "is_running": self.is_running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in tasks if t.enabled),
            "total_runs": sum(t.run_count for t in tasks),
            "total_errors": sum(t.error_count for t in tasks),
            "total_missed": sum(t.missed_count for t in tasks),
            "tasks": [t.to_dict() for t in tasks],
        }


def register_default_tasks(scheduler: DramatiqScheduler, settings: SchedulerSettings) -> None:
    """Register the daily risk sweep and the rapid-increase check.

    Args:
        scheduler: Scheduler to register on.
        settings: Cron expression and interval for the sweeps.
    """
    scheduler.add_cron_task(
        name="Daily Risk Sweep",
        actor_name="sweep_daily_risk",
        cron_expression=settings.daily_sweep_cron,
    )
    scheduler.add_interval_task(
        name="Rapid Risk Increase Check",
        actor_name="sweep_rapid_increases",
        hours=settings.rapid_increase_interval_hours,
    )
