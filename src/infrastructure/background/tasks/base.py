# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Bridge from synchronous Dramatiq actors to the async pipeline.

Delivery and sweep actors run on Dramatiq worker threads (--threads N).
The repositories, the records client and the Redis push client all hold
connections bound to the event loop that opened them, so each worker
thread keeps one long-lived loop:

- the first job on a thread opens the loop and drops any database engine
  cached for an earlier loop
- later jobs on that thread reuse it
- EventLoopMiddleware closes it when the thread shuts down
"""

import asyncio
import logging
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from src.infrastructure.database.connection import _clear_thread_db_connections

logger = logging.getLogger(__name__)

T = TypeVar("T")

_thread_local = threading.local()


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    loop = getattr(_thread_local, "event_loop", None)
    if loop is not None and not loop.is_closed():
        return loop

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _thread_local.event_loop = loop
    _clear_thread_db_connections()
    logger.debug("Opened event loop for worker thread %s", threading.current_thread().name)
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine on the current worker thread's loop.

    Args:
        coro: Coroutine to run, e.g. ``queue.process(notification_id)``.

    Returns:
        The coroutine's result.
    """
    return _get_thread_event_loop().run_until_complete(coro)


def close_thread_event_loop() -> bool:
    """Close the current thread's event loop, if it has one.

    Pending tasks are cancelled and awaited, async generators are finalized
    and cached database engines are dropped.

    Returns:
        True if a loop was closed.
    """
    loop = getattr(_thread_local, "event_loop", None)
    _thread_local.event_loop = None

    if loop is None or loop.is_closed():
        return False

    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))

    loop.run_until_complete(loop.shutdown_asyncgens())
    loop.close()
    asyncio.set_event_loop(None)
    _clear_thread_db_connections()
    return True
