"""In-process job queue backend."""

import asyncio
import logging
import uuid
from collections.abc import Callable

from backend.app.queue.base import Clock, JobQueue, RetryPolicy
from backend.app.schemas.export import ExportJob, ExportJobData, utcnow

logger = logging.getLogger(__name__)


class MemoryJobQueue(JobQueue):
    """
    Keeps jobs in a dict guarded by an asyncio lock.

    Nothing survives a restart; meant for tests and single-process runs.
    Jobs are claimed in submission order.
    """

    backend_name = "memory"

    def __init__(self, policy: RetryPolicy | None = None, name: str = "usfm-export", clock: Clock = utcnow):
        super().__init__(policy, name, clock)
        self._jobs: dict[str, ExportJob] = {}
        self._lock = asyncio.Lock()

    async def submit(self, data: ExportJobData) -> str:
        job = self._new_job(str(uuid.uuid4()), data)
        async with self._lock:
            self._jobs[job.id] = job
        logger.info(f"Queued export job {job.id} for project unit {data.project_unit_id}")
        return job.id

    async def get_job(self, job_id: str) -> ExportJob | None:
        return self._jobs.get(job_id)

    async def fetch(self, limit: int) -> list[ExportJob]:
        now = self._clock()
        claimed: list[ExportJob] = []
        async with self._lock:
            for job_id, job in list(self._jobs.items()):
                expired = self._expire_if_due(job, now)
                if expired is not None:
                    self._jobs[job_id] = job = expired
                if len(claimed) < limit and self._is_ready(job, now):
                    job = self._claim(job, now)
                    self._jobs[job_id] = job
                    claimed.append(job)
        return claimed

    async def _update(
        self, job_id: str, mutate: Callable[[ExportJob], ExportJob | None]
    ) -> ExportJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = mutate(job)
            if updated is not None:
                self._jobs[job_id] = updated
            return updated

    async def depth(self) -> int:
        return sum(1 for job in self._jobs.values() if not job.is_terminal)

    def jobs(self) -> list[ExportJob]:
        """Snapshot of every job, in submission order."""
        return list(self._jobs.values())
