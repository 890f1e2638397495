"""Celery job queue backend.

Job state lives in ``usfm_export_jobs`` as with the sql backend, while Celery
carries the deliveries: every submitted job is published as one task whose
task id is the job id. Redelivery of unacknowledged tasks, the retry count
and the backoff between retries belong to the broker (see
``worker.celery_app``); this queue records what each delivery did.
"""

import logging
from datetime import timedelta

from celery import Celery
from kombu.exceptions import OperationalError
from sqlalchemy import select
from starlette.concurrency import run_in_threadpool

from backend.app.constants import EXPORT_TASK_NAME
from backend.app.core.exceptions import ErrorKind, TransientInfraError
from backend.app.db.session import Database
from backend.app.models.export import ExportJobRecord
from backend.app.queue.base import Clock, RetryPolicy
from backend.app.queue.sql_queue import SqlJobQueue, _apply, _to_job
from backend.app.schemas.export import ExportJob, ExportJobData, utcnow

logger = logging.getLogger(__name__)


class LeaseHeldError(Exception):
    """Another delivery of the job holds an unexpired lease."""

    def __init__(self, job_id: str, retry_in: float):
        super().__init__(f"Job {job_id} is leased by another delivery for {retry_in:.0f}s")
        self.job_id = job_id
        self.retry_in = retry_in


class CeleryJobQueue(SqlJobQueue):
    """Durable job state on the application database, deliveries through Celery."""

    backend_name = "celery"

    def __init__(
        self,
        database: Database,
        celery_app: Celery,
        policy: RetryPolicy | None = None,
        name: str = "usfm-export",
        clock: Clock = utcnow,
    ):
        super().__init__(database, policy, name, clock)
        self.celery_app = celery_app

    async def _publish(self, job_id: str, countdown: float | None = None) -> None:
        await run_in_threadpool(
            self.celery_app.send_task,
            EXPORT_TASK_NAME,
            args=[job_id],
            task_id=job_id,
            queue=self.name,
            countdown=countdown,
        )

    async def submit(self, data: ExportJobData) -> str:
        """
        Store the job, then publish its task.

        Raises:
            TransientInfraError: The broker refused the task; the stored job
                is failed so it never lingers as queued
        """
        job_id = await super().submit(data)
        try:
            await self._publish(job_id)
        except (OperationalError, OSError) as e:
            await self.fail(job_id, f"Could not publish job: {e}", ErrorKind.TRANSIENT_INFRA)
            raise TransientInfraError("Job broker unavailable", details={"job_id": job_id}) from e
        return job_id

    async def fetch(self, limit: int) -> list[ExportJob]:
        """Celery pushes deliveries to its workers; there is nothing to pull."""
        return []

    async def claim(self, job_id: str) -> ExportJob | None:
        """
        Start a broker delivery of a job.

        Returns the claimed job, the job as stored when expiry has just failed
        it, or None when the job is unknown or already finished.

        Raises:
            LeaseHeldError: Another delivery is still running the job
        """
        now = self._clock()
        async with self.database.session() as session:
            record = (
                await session.execute(
                    select(ExportJobRecord).where(ExportJobRecord.id == job_id).with_for_update()
                )
            ).scalar_one_or_none()
            if record is None:
                return None
            job = _to_job(record)
            if job.is_terminal:
                return None

            expired = self._expire_if_due(job, now)
            if expired is not None:
                _apply(record, expired)
                if expired.is_terminal:
                    return expired
                job = expired

            if job.status == "processing" and job.lease_expires_at is not None:
                raise LeaseHeldError(job_id, (job.lease_expires_at - now).total_seconds())

            claimed = self._claim(job, now)
            _apply(record, claimed)
            return claimed

    async def reap(self) -> int:
        """
        Recover deliveries the broker no longer holds.

        Expires lapsed leases and stale queued jobs, then publishes again
        every job that is due for a retry but overdue by a full expiry window,
        which only happens when its task was lost. Returns the jobs touched.
        """
        now = self._clock()
        overdue_cutoff = now - timedelta(seconds=self.policy.expire_in_seconds)
        async with self.database.session() as session:
            changed = await self._reap(session, now)
            overdue = await session.execute(
                select(ExportJobRecord.id).where(
                    ExportJobRecord.queue_name == self.name,
                    ExportJobRecord.status == "processing",
                    ExportJobRecord.lease_expires_at.is_(None),
                    ExportJobRecord.run_after <= overdue_cutoff,
                )
            )
            overdue_ids = list(overdue.scalars())

        republish = {job.id: job for job in changed if job.status == "processing"}
        for job_id, job in republish.items():
            await self._publish(job_id, countdown=max(0.0, (job.run_after - now).total_seconds()))
        for job_id in overdue_ids:
            if job_id not in republish:
                await self._publish(job_id)

        touched = len(changed) + len(set(overdue_ids) - republish.keys())
        if touched:
            logger.warning(f"Recovered {touched} export job(s) on queue '{self.name}'")
        return touched
