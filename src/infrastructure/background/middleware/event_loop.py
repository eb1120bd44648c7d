# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event loop lifecycle middleware.

Worker threads keep one event loop for their whole life (see
tasks.base.run_async). This middleware closes that loop when the thread
stops, so pending transport tasks are cancelled instead of being
garbage-collected with "Task was destroyed but it is pending" warnings.
"""

import logging
import threading

import dramatiq
from dramatiq import Middleware

from src.infrastructure.background.tasks.base import close_thread_event_loop

logger = logging.getLogger(__name__)


class EventLoopMiddleware(Middleware):
    """Closes the per-thread event loop on worker thread shutdown."""

    def before_worker_thread_shutdown(self, broker: dramatiq.Broker, thread: threading.Thread) -> None:
        closed = close_thread_event_loop()
        if closed:
            logger.debug("Closed event loop for worker thread %s", thread.name)
