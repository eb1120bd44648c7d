# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for in-app notification push and per-student locks.

An in-app notification is published on the recipient's pub/sub channel
for connected clients, and kept in a short per-recipient backlog list
("{channel}:recent") for clients that connect later. Both writes go in
one MULTI/EXEC so a recipient never sees one without the other. lock()
hands out redis-py locks used to serialize risk recalculations across
worker processes.

redis.asyncio connections are bound to the event loop that created them,
and Dramatiq worker threads each run their own loop, so the client keeps
one connection pool per thread and rebuilds it when the loop changes.

Example:
    client = RedisClient(settings.redis)
    receivers = await client.push("notifications:user-1", payload, backlog_size=50)
    await client.close()
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from src.core.config.settings import RedisSettings

logger = logging.getLogger(__name__)

BACKLOG_SUFFIX = "recent"


class RedisError(Exception):
    """A Redis operation failed.

    Attributes:
        original_error: The underlying redis-py error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error

    def __str__(self) -> str:
        message = super().__str__()
        if self.original_error is not None:
            return f"{message}: {self.original_error}"
        return message


def backlog_key(channel: str) -> str:
    """List key holding the recent notifications of a pub/sub channel."""
    return f"{channel}:{BACKLOG_SUFFIX}"


class RedisClient:
    """Async Redis client with one connection pool per event loop.

    Attributes:
        url: Redis connection URL.
        max_connections: Pool size per event loop.
    """

    def __init__(self, settings: "RedisSettings") -> None:
        self.url = settings.url
        self.max_connections = settings.max_connections
        self._local = threading.local()

    def _client(self) -> Redis:
        loop = asyncio.get_running_loop()
        redis = getattr(self._local, "redis", None)
        if redis is None or getattr(self._local, "loop", None) is not loop:
            redis = Redis.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
            )
            self._local.loop = loop
            self._local.redis = redis
            logger.debug("Created Redis pool for thread %s", threading.current_thread().name)
        return redis

    async def push(
        self,
        channel: str,
        message: str,
        backlog_size: int = 0,
        backlog_ttl: int = 0,
    ) -> int:
        """Publish a message and append it to the channel's backlog.

        Args:
            channel: Pub/sub channel name.
            message: Serialized notification.
            backlog_size: Messages kept in the backlog; 0 disables it.
            backlog_ttl: Backlog expiry in seconds; 0 keeps it forever.

        Returns:
            Number of subscribers that received the message.

        Raises:
            RedisError: If the publish fails.
        """
        try:
            if backlog_size <= 0:
                return await self._client().publish(channel, message)

            key = backlog_key(channel)
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.publish(channel, message)
                pipe.lpush(key, message)
                pipe.ltrim(key, 0, backlog_size - 1)
                if backlog_ttl > 0:
                    pipe.expire(key, backlog_ttl)
                results = await pipe.execute()
        except BaseRedisError as e:
            raise RedisError(f"Failed to push to channel {channel}", e) from e
        return results[0]

    async def recent(self, channel: str, limit: int = 20) -> list[str]:
        """Newest-first backlog of a channel.

        Raises:
            RedisError: If the read fails.
        """
        try:
            return await self._client().lrange(backlog_key(channel), 0, limit - 1)
        except BaseRedisError as e:
            raise RedisError(f"Failed to read backlog of {channel}", e) from e

    def lock(self, name: str, timeout: float, blocking_timeout: float) -> Lock:
        """Create a redis-py lock on the current thread's pool.

        Args:
            name: Lock key.
            timeout: Seconds after which the lock expires if not released.
            blocking_timeout: Seconds acquire() waits before returning False.

        Returns:
            An unacquired redis.asyncio Lock.
        """
        return self._client().lock(name, timeout=timeout, blocking_timeout=blocking_timeout)

    async def ping(self) -> bool:
        """Return True if Redis answers a PING."""
        try:
            await self._client().ping()
        except BaseRedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False
        return True

    async def close(self) -> None:
        """Close the current thread's connection pool."""
        redis = getattr(self._local, "redis", None)
        self._local.redis = None
        self._local.loop = None
        if redis is not None:
            await redis.aclose()
