# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pipeline construction.

build_context() creates every collaborator of the pipeline exactly once:
database, repositories, broker, transports, delivery queues, dispatcher,
student data provider, risk service and the risk sweep actors. Both the
Dramatiq worker (src.worker) and the scheduler process (src.main) start
from it, so actors are declared on the same broker in both.

Example:
    context = build_context(get_settings())
    summary = await context.risk_service.run_daily_sweep()
    await context.close()
"""

import logging
from dataclasses import dataclass

import dramatiq

from src.core.config.settings import Settings
from src.core.risk.locks import LocalStudentLocks, RedisStudentLocks, StudentLocks
from src.core.risk.service import RiskService
from src.domains.students.provider import HttpStudentDataProvider
from src.infrastructure.background.broker import BrokerManager
from src.infrastructure.background.tasks.risk import RiskJobs
from src.infrastructure.cache.redis_client import RedisClient
from src.infrastructure.database.connection import Database
from src.infrastructure.database.repositories import (
    NotificationRepository,
    RiskRepository,
)
from src.infrastructure.notifications.channels import (
    BaseChannel,
    EmailChannel,
    InAppChannel,
    SMSChannel,
)
from src.infrastructure.notifications.queues import DeliveryQueues
from src.infrastructure.notifications.service import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Everything the worker and scheduler processes share."""

    settings: Settings
    database: Database
    redis: RedisClient
    broker_manager: BrokerManager
    risk_repository: RiskRepository
    notification_repository: NotificationRepository
    queues: DeliveryQueues
    dispatcher: NotificationDispatcher
    provider: HttpStudentDataProvider
    risk_service: RiskService
    risk_jobs: RiskJobs

    @property
    def broker(self) -> dramatiq.Broker:
        return self.broker_manager.broker

    async def close(self) -> None:
        """Release connections held by the current thread."""
        await self.provider.close()
        await self.redis.close()
        await self.database.close()
        self.broker_manager.shutdown()


def build_channels(settings: Settings, redis: RedisClient) -> list[BaseChannel]:
    """Create the channel transports.

    Unconfigured transports are still created; the dispatcher disables
    their channel per notification.
    """
    channels: list[BaseChannel] = [
        InAppChannel(settings.in_app, redis),
        EmailChannel(settings.email),
        SMSChannel(settings.sms),
    ]
    for channel in channels:
        if not channel.is_configured:
            logger.warning("%s transport is not configured", channel.channel_type.value)
    return channels


def build_student_locks(settings: Settings, redis: RedisClient, local: bool) -> StudentLocks:
    """Create the per-student recalculation locks.

    Workers on a Redis broker may run in several processes, so they lock
    through Redis. The in-memory broker runs in one process.
    """
    if local:
        return LocalStudentLocks(wait_timeout=settings.scheduler.student_lock_wait_seconds)
    return RedisStudentLocks(
        redis,
        timeout=settings.scheduler.student_lock_timeout_seconds,
        wait_timeout=settings.scheduler.student_lock_wait_seconds,
    )


def build_context(settings: Settings) -> PipelineContext:
    """Build the pipeline from settings.

    Args:
        settings: Application settings.

    Returns:
        PipelineContext with all collaborators wired.
    """
    database = Database.from_settings(settings.database)
    redis = RedisClient(settings.redis)

    broker_manager = BrokerManager(settings.redis)
    broker = broker_manager.setup()

    risk_repository = RiskRepository(database)
    notification_repository = NotificationRepository(database)

    queues = DeliveryQueues.build(
        broker,
        build_channels(settings, redis),
        notification_repository,
        settings.delivery,
    )
    dispatcher = NotificationDispatcher(
        notification_repository,
        queues,
        short_message_length=settings.delivery.short_message_length,
    )

    provider = HttpStudentDataProvider(settings.student_data)
    risk_service = RiskService(
        provider,
        risk_repository,
        dispatcher,
        settings.scheduler,
        locks=build_student_locks(settings, redis, broker_manager.is_stub),
    )
    risk_jobs = RiskJobs(broker, risk_service)

    logger.info("Pipeline context built (%s)", settings.environment)
    return PipelineContext(
        settings=settings,
        database=database,
        redis=redis,
        broker_manager=broker_manager,
        risk_repository=risk_repository,
        notification_repository=notification_repository,
        queues=queues,
        dispatcher=dispatcher,
        provider=provider,
        risk_service=risk_service,
        risk_jobs=risk_jobs,
    )
