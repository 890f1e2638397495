"""
Tests for the Redis job queue backend.

Skipped unless a Redis server is reachable at TEST_REDIS_URL
(default redis://localhost:6379/15).
"""

import os
import uuid

import pytest
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from backend.app.core.exceptions import ErrorKind
from backend.app.queue import RedisJobQueue, RetryPolicy
from backend.app.schemas.export import ExportJobData, JobResult

REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture
async def redis_queue(clock):
    client = aioredis.from_url(REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        pytest.skip(f"Redis not reachable at {REDIS_URL}")

    policy = RetryPolicy(retry_limit=1, retry_delay=10, expire_in_seconds=60, retention_seconds=600)
    queue = RedisJobQueue(client, policy, name=f"test-{uuid.uuid4().hex[:8]}", clock=clock.now)
    yield queue

    keys = [key async for key in client.scan_iter(f"{queue.prefix}:*")]
    if keys:
        await client.delete(*keys)
    await queue.close()


async def submit(queue) -> str:
    return await queue.submit(ExportJobData(project_unit_id=10, book_ids=[1]))


class TestRedisQueue:
    """Same delivery rules as the other backends, on Redis."""

    async def test_submit_fetch_complete(self, redis_queue):
        job_id = await submit(redis_queue)
        assert await redis_queue.depth() == 1

        (job,) = await redis_queue.fetch(5)
        assert job.id == job_id
        assert job.attempts == 1

        await redis_queue.complete(
            job_id, JobResult(job_id=job_id, status="completed", filename=f"export-{job_id}.zip", size_bytes=5)
        )
        stored = await redis_queue.get_job(job_id)
        assert stored.status == "completed"
        assert await redis_queue.depth() == 0

    async def test_leased_job_not_claimed_twice(self, redis_queue):
        await submit(redis_queue)
        await redis_queue.fetch(1)

        assert await redis_queue.fetch(1) == []

    async def test_retry_after_backoff(self, redis_queue, clock):
        job_id = await submit(redis_queue)
        await redis_queue.fetch(1)
        await redis_queue.fail(job_id, "connection reset", ErrorKind.TRANSIENT_INFRA)

        assert await redis_queue.fetch(1) == []
        clock.advance(10)
        (job,) = await redis_queue.fetch(1)
        assert job.attempts == 2

    async def test_expired_lease_is_redelivered(self, redis_queue, clock):
        job_id = await submit(redis_queue)
        await redis_queue.fetch(1)

        clock.advance(61)
        assert await redis_queue.fetch(1) == []
        clock.advance(10)

        assert [job.id for job in await redis_queue.fetch(1)] == [job_id]
