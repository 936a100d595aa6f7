"""
Optional queue backends.

A backend mirrors scheduled jobs into an external queue and can wake the
dispatcher early when new work arrives. It is never a source of truth: the
job row decides status, and claims always go through the JobStore.
"""

from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from jobengine.config.logging import get_logger
from jobengine.jobs.models import Job

logger = get_logger(__name__)


class QueueBackend(Protocol):
    name: str

    async def ping(self) -> bool:
        """Return True when the backend is reachable."""
        ...

    async def enqueue(self, job: Job) -> None:
        """Mirror a pending job. May raise; callers treat failures as warnings."""
        ...

    async def remove(self, job: Job) -> None:
        """Drop a job that left the pending state."""
        ...

    async def wait_for_work(self, timeout_s: float) -> bool:
        """Block up to ``timeout_s`` for a wake-up signal."""
        ...

    async def close(self) -> None: ...


class RedisQueueBackend:
    """
    Redis mirror of the pending queue.

    Each priority has a sorted set scored by ``scheduled_at`` so external
    consumers can inspect the queue in claim order, and every enqueue pushes a
    token onto a wake-up list the dispatcher blocks on between polls.
    """

    name = "redis"

    def __init__(self, url: str, prefix: str = "jobengine"):
        self.url = url
        self.prefix = prefix
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        """Get or create Redis client (lazy initialization)."""
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def _queue_key(self, priority: int) -> str:
        return f"{self.prefix}:queue:{priority}"

    @property
    def _wake_key(self) -> str:
        return f"{self.prefix}:wake"

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(
                "Queue backend not reachable", backend=self.name, error=str(e)
            )
            return False

    async def enqueue(self, job: Job) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(
                self._queue_key(job.priority),
                {str(job.id): job.scheduled_at.timestamp()},
            )
            pipe.lpush(self._wake_key, str(job.id))
            pipe.ltrim(self._wake_key, 0, 999)
            await pipe.execute()

    async def remove(self, job: Job) -> None:
        await self.client.zrem(self._queue_key(job.priority), str(job.id))

    async def wait_for_work(self, timeout_s: float) -> bool:
        try:
            popped = await self.client.blpop([self._wake_key], timeout=timeout_s)
        except RedisError as e:
            logger.warning("Queue backend wait failed", backend=self.name, error=str(e))
            return False
        return popped is not None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
