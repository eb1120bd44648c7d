# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-student locks around the recalculation pipeline.

A recalculation reads the previous level, scores the student, sends the
escalation alert and writes the profile last. Two runs for the same
student must not interleave, or both read the old level and both alert.
Sweeps and on-demand jobs run on several Dramatiq worker threads and
worker processes, so the lock has to hold across all of them:

- RedisStudentLocks: one redis-py Lock per student ("risk:lock:{id}"),
  shared by every process connected to the same Redis. The lock expires
  after a timeout so a crashed worker cannot block a student forever.
- LocalStudentLocks: one threading.Lock per student, shared by every
  thread and event loop of a single process. Used with the in-memory
  broker.

Example:
    locks = RedisStudentLocks(redis, timeout=300, wait_timeout=120)
    async with locks.hold("stu-1"):
        ...
"""

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Protocol

from redis.exceptions import RedisError as BaseRedisError

from src.core.exceptions import LockTimeoutError
from src.infrastructure.cache.redis_client import RedisError

if TYPE_CHECKING:
    from src.infrastructure.cache.redis_client import RedisClient

logger = logging.getLogger(__name__)

LOCK_PREFIX = "risk:lock"


class StudentLocks(Protocol):
    """Mutual exclusion per student id."""

    def hold(self, student_id: str) -> AbstractAsyncContextManager[None]:
        ...


class LocalStudentLocks:
    """Per-student locks for a single process.

    threading.Lock is used instead of asyncio.Lock because asyncio locks
    are bound to one event loop, and each worker thread runs its own.
    Acquisition polls without blocking so the event loop keeps running
    while another thread holds the lock.

    Attributes:
        wait_timeout: Seconds to wait for the lock; None waits forever.
        poll_interval: Seconds between acquisition attempts.
    """

    def __init__(self, wait_timeout: float | None = None, poll_interval: float = 0.01) -> None:
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    async def _acquire(self, lock: threading.Lock, student_id: str) -> None:
        deadline = None if self.wait_timeout is None else time.monotonic() + self.wait_timeout
        while not lock.acquire(blocking=False):
            if deadline is not None and time.monotonic() >= deadline:
                raise LockTimeoutError(student_id, self.wait_timeout)
            await asyncio.sleep(self.poll_interval)

    @asynccontextmanager
    async def hold(self, student_id: str) -> AsyncIterator[None]:
        """Hold the student's lock for the duration of the block.

        Raises:
            LockTimeoutError: If wait_timeout passes before the lock is free.
        """
        with self._guard:
            lock = self._locks.setdefault(student_id, threading.Lock())
            self._users[student_id] = self._users.get(student_id, 0) + 1
        try:
            await self._acquire(lock, student_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                self._users[student_id] -= 1
                if not self._users[student_id]:
                    del self._users[student_id]
                    del self._locks[student_id]


class RedisStudentLocks:
    """Per-student locks shared by every process using one Redis.

    Attributes:
        redis: Redis client creating the locks.
        timeout: Seconds after which a held lock expires.
        wait_timeout: Seconds to wait for the lock before giving up.
        prefix: Key prefix; the key is "{prefix}:{student_id}".
    """

    def __init__(
        self,
        redis: "RedisClient",
        timeout: float,
        wait_timeout: float,
        prefix: str = LOCK_PREFIX,
    ) -> None:
        self.redis = redis
        self.timeout = timeout
        self.wait_timeout = wait_timeout
        self.prefix = prefix

    def key(self, student_id: str) -> str:
        return f"{self.prefix}:{student_id}"

    @asynccontextmanager
    async def hold(self, student_id: str) -> AsyncIterator[None]:
        """Hold the student's Redis lock for the duration of the block.

        Raises:
            LockTimeoutError: If another holder keeps the lock past wait_timeout.
            RedisError: If Redis cannot be reached.
        """
        lock = self.redis.lock(
            self.key(student_id),
            timeout=self.timeout,
            blocking_timeout=self.wait_timeout,
        )
        try:
            acquired = await lock.acquire()
        except BaseRedisError as e:
            raise RedisError(f"Failed to lock student {student_id}", e) from e
        if not acquired:
            raise LockTimeoutError(student_id, self.wait_timeout)

        try:
            yield
        finally:
            try:
                await lock.release()
            except BaseRedisError as e:
                # expired or connection lost; the key expires on its own
                logger.warning("Could not release lock for student %s: %s", student_id, e)
