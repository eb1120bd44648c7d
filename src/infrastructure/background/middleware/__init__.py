# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq middleware for the risk pipeline.

- JobContextMiddleware: binds actor and message id to the logging context
- EventLoopMiddleware: closes each worker thread's event loop on shutdown
"""

from src.infrastructure.background.middleware.context import JobContextMiddleware
from src.infrastructure.background.middleware.event_loop import EventLoopMiddleware

__all__ = [
    "EventLoopMiddleware",
    "JobContextMiddleware",
]
