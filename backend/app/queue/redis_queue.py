"""Redis job queue backend.

Layout, per queue name:

- ``{prefix}:job:{id}``   JSON document of the job
- ``{prefix}:pending``    sorted set of claimable job ids, scored by run_after
- ``{prefix}:active``     sorted set of delivered job ids, scored by lease expiry

Every state change is a WATCH/MULTI transaction over the job key, so two
workers racing for the same id cannot both claim it.
"""

import logging
import uuid
from collections.abc import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from backend.app.core.exceptions import TransientInfraError
from backend.app.queue.base import Clock, JobQueue, RetryPolicy
from backend.app.schemas.export import ExportJob, ExportJobData, utcnow

logger = logging.getLogger(__name__)

# Finished job documents are kept for inspection, then dropped
COMPLETED_JOB_TTL_SECONDS = 24 * 3600
FAILED_JOB_TTL_SECONDS = 7 * 24 * 3600


class RedisJobQueue(JobQueue):
    """Durable queue on Redis."""

    backend_name = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        policy: RetryPolicy | None = None,
        name: str = "usfm-export",
        clock: Clock = utcnow,
    ):
        super().__init__(policy, name, clock)
        self.redis = client
        self.prefix = f"queue:{name}"

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisJobQueue":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    @property
    def _pending_key(self) -> str:
        return f"{self.prefix}:pending"

    @property
    def _active_key(self) -> str:
        return f"{self.prefix}:active"

    def _stage_writes(self, pipe, job: ExportJob) -> None:
        """Queue the commands that store job and keep both indexes in step."""
        key = self._job_key(job.id)
        pipe.set(key, job.model_dump_json())

        if job.status == "completed":
            pipe.zrem(self._pending_key, job.id)
            pipe.zrem(self._active_key, job.id)
            pipe.expire(key, COMPLETED_JOB_TTL_SECONDS)
        elif job.status == "failed":
            pipe.zrem(self._pending_key, job.id)
            pipe.zrem(self._active_key, job.id)
            pipe.expire(key, FAILED_JOB_TTL_SECONDS)
        elif job.lease_expires_at is not None:
            pipe.zrem(self._pending_key, job.id)
            pipe.zadd(self._active_key, {job.id: job.lease_expires_at.timestamp()})
        else:
            pipe.zrem(self._active_key, job.id)
            pipe.zadd(self._pending_key, {job.id: job.run_after.timestamp()})

    async def submit(self, data: ExportJobData) -> str:
        job = self._new_job(str(uuid.uuid4()), data)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                self._stage_writes(pipe, job)
                await pipe.execute()
        except RedisError as e:
            raise TransientInfraError("Failed to enqueue export job", details={"error": str(e)}) from e
        logger.info(f"Queued export job {job.id} for project unit {data.project_unit_id}")
        return job.id

    async def get_job(self, job_id: str) -> ExportJob | None:
        raw = await self.redis.get(self._job_key(job_id))
        return ExportJob.model_validate_json(raw) if raw is not None else None

    async def _update(
        self, job_id: str, mutate: Callable[[ExportJob], ExportJob | None]
    ) -> ExportJob | None:
        key = self._job_key(job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        await pipe.unwatch()
                        return None
                    updated = mutate(ExportJob.model_validate_json(raw))
                    if updated is None:
                        await pipe.unwatch()
                        return None
                    pipe.multi()
                    self._stage_writes(pipe, updated)
                    await pipe.execute()
                    return updated
                except WatchError:
                    # Someone else changed the job; re-read and decide again
                    continue

    async def fetch(self, limit: int) -> list[ExportJob]:
        now = self._clock()
        now_ts = now.timestamp()

        # Deliveries whose lease ran out
        for job_id in await self.redis.zrangebyscore(self._active_key, "-inf", now_ts):
            await self._update(job_id, lambda job: self._expire_if_due(job, now))

        claimed: list[ExportJob] = []
        candidates = await self.redis.zrangebyscore(
            self._pending_key, "-inf", now_ts, start=0, num=limit * 2
        )
        for job_id in candidates:
            if len(claimed) >= limit:
                break

            def claim(job: ExportJob) -> ExportJob | None:
                expired = self._expire_if_due(job, now)
                if expired is not None:
                    return expired
                return self._claim(job, now) if self._is_ready(job, now) else None

            job = await self._update(job_id, claim)
            if job is not None and job.status == "processing" and job.lease_expires_at is not None:
                claimed.append(job)
        return claimed

    async def depth(self) -> int:
        pending = await self.redis.zcard(self._pending_key)
        active = await self.redis.zcard(self._active_key)
        return int(pending) + int(active)

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        await self.redis.aclose()
