"""USFM export worker."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool

from backend.app.constants import (
    PROGRESS_ARCHIVED,
    PROGRESS_PROJECT_RESOLVED,
    PROGRESS_STARTED,
    PROGRESS_STORED,
)
from backend.app.core.exceptions import NotFoundError, PermanentContentError, error_kind
from backend.app.queue.base import JobQueue
from backend.app.schemas.export import ExportJob, JobResult
from backend.app.services.artifact_store import ArtifactStore, artifact_filename, format_bytes
from backend.app.services.document_assembler import ContentSource, DocumentAssembler
from processing.export import ArchiveStreamer
from processing.usfm import render_usfm

logger = logging.getLogger(__name__)


@dataclass
class WorkerHooks:
    """Optional callbacks for metrics; a failing hook never affects a job."""

    on_batch_start: Callable[[int], None] | None = None
    on_batch_end: Callable[[int], None] | None = None
    on_job_success: Callable[[float], None] | None = None
    on_job_failure: Callable[[float], None] | None = None


class ExportWorker:
    """
    Runs export jobs handed over by the job queue.

    Each job goes through project lookup, document assembly, archiving and
    storage. Jobs of a batch run concurrently and fail independently: one
    job raising never cancels or delays its siblings.
    """

    def __init__(
        self,
        queue: JobQueue,
        assembler: DocumentAssembler,
        content: ContentSource,
        streamer: ArchiveStreamer,
        store: ArtifactStore,
        hooks: WorkerHooks | None = None,
    ):
        self.queue = queue
        self.assembler = assembler
        self.content = content
        self.streamer = streamer
        self.store = store
        self.hooks = hooks or WorkerHooks()
        self.active_jobs = 0

    def _emit(self, hook_name: str, value: float) -> None:
        hook = getattr(self.hooks, hook_name)
        if hook is None:
            return
        try:
            hook(value)
        except Exception as e:
            logger.warning(f"Worker hook {hook_name} raised: {e}")

    async def process_batch(self, jobs: list[ExportJob]) -> list[JobResult]:
        """Run every job of a batch and return one result per job, in batch order."""
        self._emit("on_batch_start", len(jobs))
        try:
            outcomes = await asyncio.gather(
                *(self._run_job(job) for job in jobs), return_exceptions=True
            )
        finally:
            self._emit("on_batch_end", len(jobs))

        results: list[JobResult] = []
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                results.append(
                    JobResult(
                        job_id=job.id,
                        status="failed",
                        error=str(outcome) or type(outcome).__name__,
                        error_kind=error_kind(outcome),
                    )
                )
            else:
                results.append(outcome)
        return results

    async def _run_job(self, job: ExportJob) -> JobResult:
        start = time.perf_counter()
        self.active_jobs += 1
        try:
            result = await self.export(job)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(f"USFM export job {job.id} failed after {duration_ms:.0f}ms: {e}")
            self._emit("on_job_failure", duration_ms)
            return JobResult(
                job_id=job.id,
                status="failed",
                error=str(e) or type(e).__name__,
                error_kind=error_kind(e),
                duration_ms=duration_ms,
            )
        finally:
            self.active_jobs -= 1

        duration_ms = (time.perf_counter() - start) * 1000
        self._emit("on_job_success", duration_ms)
        return result.model_copy(update={"duration_ms": duration_ms})

    async def settle(self, job_id: str) -> None:
        """
        Align the job's archive with its recorded state.

        Runs after the queue has recorded a delivery's outcome, which may have
        been decided by another delivery of the same job. The archive stays
        while the job is completed or has attempts left, and is removed once
        the job has failed or no longer exists.
        """
        current = await self.queue.get_job(job_id)
        if current is not None and current.status != "failed":
            return
        try:
            removed = await run_in_threadpool(self.store.delete, artifact_filename(job_id))
        except OSError as e:
            logger.warning(f"Could not remove artifact of failed job {job_id}: {e}")
            return
        if removed:
            logger.info(f"Removed archive of failed export job {job_id}")

    async def export(self, job: ExportJob) -> JobResult:
        """
        Produce and store the archive for one job.

        Raises:
            NotFoundError: The project or its books do not exist
            ValidationError: Requested books are not part of the project unit
            PermanentContentError: None of the books has any verses
            TransientInfraError: Storage or queue failures
        """
        logger.info(
            f"Starting USFM export job {job.id}: project unit {job.project_unit_id}, "
            f"books={job.book_ids or 'all'}, attempt {job.attempts}, requested by {job.requested_by}"
        )
        await self.queue.update_progress(job.id, PROGRESS_STARTED)

        project_name = await self.content.get_project_name(job.project_unit_id)
        if not project_name:
            raise NotFoundError("Project not found", details={"project_unit_id": job.project_unit_id})
        await self.queue.update_progress(job.id, PROGRESS_PROJECT_RESOLVED, project_name=project_name)

        documents = await self.assembler.assemble(job.project_unit_id, job.book_ids)
        if not documents:
            raise PermanentContentError(
                "Archive contains no entries: none of the selected books has verses",
                details={"project_unit_id": job.project_unit_id, "book_ids": job.book_ids},
            )

        stream = self.streamer.open((doc.entry_name, render_usfm(doc)) for doc in documents)
        try:
            data = await stream.aread_all()
        finally:
            stream.cleanup()
        await self.queue.update_progress(job.id, PROGRESS_ARCHIVED)

        record = await run_in_threadpool(self.store.save, job.id, data)
        await self.queue.update_progress(job.id, PROGRESS_STORED)

        logger.info(
            f"USFM export job {job.id} completed: {stream.entry_count} book(s), "
            f"{record.filename} ({format_bytes(record.size_bytes)})"
        )
        return JobResult(
            job_id=job.id,
            status="completed",
            filename=record.filename,
            size_bytes=record.size_bytes,
            expires_at=record.expires_at,
            project_name=project_name,
        )
