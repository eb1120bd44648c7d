# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler process.

Ensures the schema exists, then runs APScheduler, which enqueues the
daily risk sweep and the rapid-increase check on the broker. The jobs
themselves run in the Dramatiq worker (src.worker).

Usage:
    python -m src.main
"""

import asyncio
import logging
import signal

from src.core.config import get_settings
from src.core.context import build_context
from src.infrastructure.background.scheduler import DramatiqScheduler, register_default_tasks
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def run_scheduler() -> None:
    """Run the scheduler until SIGINT or SIGTERM."""
    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting Dropout Sentinel scheduler (%s)", settings.environment)

    context = build_context(settings)
    await context.database.create_all()

    if not settings.scheduler.enabled:
        logger.warning("Scheduler disabled (SCHEDULER_ENABLED=false), exiting")
        await context.close()
        return

    scheduler = DramatiqScheduler(
        context.broker,
        timezone=settings.scheduler.timezone,
        misfire_grace_seconds=settings.scheduler.misfire_grace_seconds,
    )
    register_default_tasks(scheduler, settings.scheduler)
    await scheduler.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        await scheduler.stop()
        await context.close()
        logger.info("Scheduler shutdown complete")


def main() -> None:
    asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
