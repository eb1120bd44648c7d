# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq broker for the risk pipeline.

One broker carries two kinds of work:
- channel deliveries (notifications.email, notifications.sms,
  notifications.in_app), one queue per channel so a slow SMS gateway
  never holds up email
- risk sweeps (risk), enqueued by the scheduler process

Actors are declared explicitly on the broker returned by setup() (see
notifications.queues and background.tasks.risk), so nothing depends on a
global broker existing at import time. DRAMATIQ_TEST_MODE=true swaps in
an in-memory StubBroker.

Example:
    manager = BrokerManager(settings.redis)
    broker = manager.setup()
    ...
    manager.shutdown()
"""

import logging
import os
from typing import TYPE_CHECKING, Any

import dramatiq
import redis
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

if TYPE_CHECKING:
    from src.core.config.settings import RedisSettings

logger = logging.getLogger(__name__)


class Queues:
    """Queue names used by the pipeline."""

    EMAIL = "notifications.email"
    SMS = "notifications.sms"
    IN_APP = "notifications.in_app"
    RISK = "risk"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.EMAIL, cls.SMS, cls.IN_APP, cls.RISK]

    @classmethod
    def for_channel(cls, channel: str) -> str:
        """Queue name of a delivery channel ("email" -> "notifications.email")."""
        return f"notifications.{channel}"


def use_stub_broker() -> bool:
    """Check whether DRAMATIQ_TEST_MODE asks for an in-memory broker."""
    return os.getenv("DRAMATIQ_TEST_MODE", "false").lower() == "true"


def redact_url(url: str) -> str:
    """Drop credentials from a connection URL for logging."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url.split("@")[-1]
    return f"{scheme}://{rest.split('@')[-1]}"


class BrokerManager:
    """Creates, configures and closes the pipeline broker.

    Attributes:
        _broker: The Dramatiq broker instance, None until setup().
    """

    def __init__(self, settings: "RedisSettings", stub: bool | None = None) -> None:
        """Initialize broker manager.

        Args:
            settings: Redis configuration.
            stub: Force a StubBroker. Defaults to DRAMATIQ_TEST_MODE.
        """
        self._settings = settings
        self._stub = use_stub_broker() if stub is None else stub
        self._broker: dramatiq.Broker | None = None

    @property
    def broker(self) -> dramatiq.Broker:
        """The configured broker.

        Raises:
            RuntimeError: If setup() has not been called.
        """
        if self._broker is None:
            raise RuntimeError("Broker not initialized. Call setup() first.")
        return self._broker

    @property
    def is_initialized(self) -> bool:
        return self._broker is not None

    @property
    def is_stub(self) -> bool:
        return self._stub

    def setup(self) -> dramatiq.Broker:
        """Create the broker, register pipeline middleware and declare queues.

        Calling setup() again returns the existing broker.

        Returns:
            Configured broker instance.
        """
        if self._broker is not None:
            return self._broker

        # Imported here: the middleware depends on tasks.base, whose package
        # imports the risk actors, which import this module.
        from src.infrastructure.background.middleware import (
            EventLoopMiddleware,
            JobContextMiddleware,
        )

        broker: dramatiq.Broker
        if self._stub:
            broker = StubBroker()
            broker.emit_after("process_boot")
            logger.info("Using StubBroker")
        else:
            broker = RedisBroker(url=self._settings.url)
            logger.info("Redis broker connected to %s", redact_url(self._settings.url))

        broker.add_middleware(JobContextMiddleware())
        broker.add_middleware(EventLoopMiddleware())
        for queue_name in Queues.all():
            broker.declare_queue(queue_name)

        # The dramatiq CLI looks up the global broker
        dramatiq.set_broker(broker)
        self._broker = broker
        return broker

    def shutdown(self) -> None:
        """Close the broker. Safe to call more than once."""
        if self._broker is None:
            return
        self._broker.close()
        self._broker = None
        logger.info("Broker shutdown complete")

    def get_queue_stats(self) -> dict[str, Any]:
        """Report message counts per queue.

        For Redis, each queue reports ready, delayed (retry backoff) and
        dead-lettered messages. The stub broker only knows ready messages.

        Returns:
            Dictionary with broker_type, status and a queues mapping.
        """
        if self._broker is None:
            return {"status": "not_initialized"}

        if not isinstance(self._broker, RedisBroker):
            return {
                "broker_type": "stub",
                "status": "healthy",
                "queues": {name: {"ready": queue.qsize()} for name, queue in self._broker.queues.items()},
            }

        stats: dict[str, Any] = {"broker_type": "redis"}
        try:
            client = redis.from_url(self._settings.url)
            pipe = client.pipeline(transaction=False)
            for queue in Queues.all():
                pipe.llen(f"dramatiq:{queue}")
                pipe.llen(f"dramatiq:{queue}.DQ")
                pipe.zcard(f"dramatiq:{queue}.XQ")
            counts = pipe.execute()
        except redis.RedisError as e:
            logger.warning("Queue stats unavailable: %s", e)
            stats["status"] = "error"
            stats["error"] = str(e)
            return stats

        stats["status"] = "healthy"
        stats["queues"] = {
            queue: {
                "ready": counts[index * 3],
                "delayed": counts[index * 3 + 1],
                "dead": counts[index * 3 + 2],
            }
            for index, queue in enumerate(Queues.all())
        }
        return stats
