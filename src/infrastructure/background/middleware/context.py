# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Logging context middleware.

Binds the actor name, message id and retry count of the message being
processed to the structlog context, so every record a job writes (delivery
attempts, sweep progress) can be traced back to its message.
"""

import logging
from typing import Any

import dramatiq
from dramatiq import Message, Middleware

from src.utils.logging import bind_context, clear_context

logger = logging.getLogger(__name__)


class JobContextMiddleware(Middleware):
    """Middleware that scopes the logging context to one message.

    Usage:
        broker.add_middleware(JobContextMiddleware())
    """

    def before_process_message(self, broker: dramatiq.Broker, message: Message) -> None:
        """Bind message details before the actor runs.

        Args:
            broker: The broker instance.
            message: The message being processed.
        """
        bind_context(
            actor=message.actor_name,
            message_id=message.message_id,
            retries=message.options.get("retries", 0),
        )

    def after_process_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
        *,
        result: Any = None,
        exception: BaseException | None = None,
    ) -> None:
        """Clear the context once the message is done.

        Args:
            broker: The broker instance.
            message: The processed message.
            result: Actor result, if any.
            exception: Exception raised by the actor, if any.
        """
        if exception is not None:
            logger.debug("Message %s raised %s", message.message_id, type(exception).__name__)
        clear_context()

    def after_skip_message(self, broker: dramatiq.Broker, message: Message) -> None:
        clear_context()
