"""
Rolling-window rate limiter backed by a Redis sorted set.

Each admitted call adds a member scored by its timestamp; members older than
the window are pruned before counting. Because the window lives in Redis the
limit holds across every worker process sharing the queue.
"""
import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Admit at most max_calls per rolling window_seconds."""

    def __init__(
        self,
        client: redis.Redis,
        key: str,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.key = key
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.max_calls > 0 and self.window_seconds > 0

    async def acquire_slot(self) -> Optional[str]:
        """
        Take one slot in the current window.

        Returns:
            The window member holding the slot (empty when the limiter is
            disabled), or None if the window is full
        """
        if not self.enabled:
            return ""

        now = self._clock()
        member = f"{now:.6f}-{uuid.uuid4().hex[:8]}"

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(self.key, 0, now - self.window_seconds)
            pipe.zadd(self.key, {member: now})
            pipe.zcard(self.key)
            pipe.expire(self.key, int(self.window_seconds) + 1)
            _, _, count, _ = await pipe.execute()

        if count > self.max_calls:
            await self.client.zrem(self.key, member)
            return None
        return member

    async def release(self, member: Optional[str]) -> None:
        """Give back a slot that ended up unused."""
        if member:
            await self.client.zrem(self.key, member)

    async def try_acquire(self) -> bool:
        """True if a slot was taken, False if the window is full."""
        return await self.acquire_slot() is not None

    async def seconds_until_slot(self) -> float:
        """How long until the oldest admitted call leaves the window."""
        if not self.enabled:
            return 0.0
        oldest = await self.client.zrange(self.key, 0, 0, withscores=True)
        if not oldest:
            return 0.0
        _, score = oldest[0]
        return max(0.0, score + self.window_seconds - self._clock())

    async def acquire(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_wait_step: Optional[float] = 5.0,
    ) -> None:
        """Wait until a slot is available, then take it."""
        while not await self.try_acquire():
            delay = await self.seconds_until_slot()
            if max_wait_step is not None:
                delay = min(delay, max_wait_step)
            logger.debug(f"Rate limit '{self.key}' reached, waiting {delay:.2f}s")
            await sleep(max(delay, 0.05))
