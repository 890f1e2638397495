"""Relational job queue backend.

Jobs live in ``usfm_export_jobs``. Workers claim rows with
``SELECT ... FOR UPDATE SKIP LOCKED`` so several worker processes can share
one table without handing the same job out twice per delivery.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import Database
from backend.app.models.export import ExportJobRecord
from backend.app.queue.base import Clock, JobQueue, RetryPolicy
from backend.app.schemas.export import ExportJob, ExportJobData, utcnow

logger = logging.getLogger(__name__)

# Columns written back after a state change
_MUTABLE_FIELDS = (
    "status",
    "progress",
    "attempts",
    "started_at",
    "completed_at",
    "expires_at",
    "error",
    "filename",
    "size_bytes",
    "project_name",
    "run_after",
    "lease_expires_at",
)


def _to_job(record: ExportJobRecord) -> ExportJob:
    return ExportJob.model_validate(record)


def _apply(record: ExportJobRecord, job: ExportJob) -> None:
    for field in _MUTABLE_FIELDS:
        setattr(record, field, getattr(job, field))
    record.error_kind = job.error_kind.value if job.error_kind is not None else None


class SqlJobQueue(JobQueue):
    """Durable queue on the application database."""

    backend_name = "sql"

    def __init__(
        self,
        database: Database,
        policy: RetryPolicy | None = None,
        name: str = "usfm-export",
        clock: Clock = utcnow,
    ):
        super().__init__(policy, name, clock)
        self.database = database

    async def submit(self, data: ExportJobData) -> str:
        job = self._new_job(str(uuid.uuid4()), data)
        record = ExportJobRecord(
            id=job.id,
            queue_name=self.name,
            project_unit_id=job.project_unit_id,
            book_ids=job.book_ids,
            requested_by=job.requested_by,
            requested_at=job.requested_at,
            status=job.status,
            progress=0,
            attempts=0,
            run_after=job.run_after,
            created_at=job.created_at,
            updated_at=job.created_at,
        )
        async with self.database.session() as session:
            session.add(record)
        logger.info(f"Queued export job {job.id} for project unit {data.project_unit_id}")
        return job.id

    async def get_job(self, job_id: str) -> ExportJob | None:
        async with self.database.session() as session:
            record = await session.get(ExportJobRecord, job_id)
            return _to_job(record) if record is not None else None

    async def _reap(self, session: AsyncSession, now: datetime) -> list[ExportJob]:
        """Expire lapsed leases and jobs never claimed in time; returns the changed jobs."""
        changed: list[ExportJob] = []

        # Deliveries whose lease ran out
        expired_leases = await session.execute(
            select(ExportJobRecord)
            .where(
                ExportJobRecord.queue_name == self.name,
                ExportJobRecord.status == "processing",
                ExportJobRecord.lease_expires_at.is_not(None),
                ExportJobRecord.lease_expires_at <= now,
            )
            .with_for_update(skip_locked=True)
        )
        for record in expired_leases.scalars():
            updated = self._expire_if_due(_to_job(record), now)
            if updated is not None:
                _apply(record, updated)
                changed.append(updated)

        # Jobs nobody claimed within the retention window
        stale_cutoff = now - timedelta(seconds=self.policy.retention_seconds)
        stale = await session.execute(
            select(ExportJobRecord)
            .where(
                ExportJobRecord.queue_name == self.name,
                ExportJobRecord.status == "queued",
                ExportJobRecord.created_at <= stale_cutoff,
            )
            .with_for_update(skip_locked=True)
        )
        for record in stale.scalars():
            updated = self._expire_if_due(_to_job(record), now)
            if updated is not None:
                _apply(record, updated)
                changed.append(updated)

        await session.flush()
        return changed

    async def fetch(self, limit: int) -> list[ExportJob]:
        now = self._clock()
        claimed: list[ExportJob] = []

        async with self.database.session() as session:
            await self._reap(session, now)

            ready = await session.execute(
                select(ExportJobRecord)
                .where(
                    ExportJobRecord.queue_name == self.name,
                    or_(
                        ExportJobRecord.status == "queued",
                        and_(
                            ExportJobRecord.status == "processing",
                            ExportJobRecord.lease_expires_at.is_(None),
                            ExportJobRecord.run_after <= now,
                        ),
                    ),
                )
                .order_by(ExportJobRecord.run_after, ExportJobRecord.created_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            for record in ready.scalars():
                job = self._claim(_to_job(record), now)
                _apply(record, job)
                claimed.append(job)

        if claimed:
            logger.debug(f"Claimed {len(claimed)} job(s) from queue '{self.name}'")
        return claimed

    async def _update(
        self, job_id: str, mutate: Callable[[ExportJob], ExportJob | None]
    ) -> ExportJob | None:
        async with self.database.session() as session:
            record = (
                await session.execute(
                    select(ExportJobRecord).where(ExportJobRecord.id == job_id).with_for_update()
                )
            ).scalar_one_or_none()
            if record is None:
                return None
            updated = mutate(_to_job(record))
            if updated is not None:
                _apply(record, updated)
            return updated

    async def depth(self) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ExportJobRecord)
                .where(
                    ExportJobRecord.queue_name == self.name,
                    ExportJobRecord.status.in_(("queued", "processing")),
                )
            )
            return int(result.scalar_one())
