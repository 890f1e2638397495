"""USFM export tasks for the celery job queue backend."""

import asyncio
import logging

from backend.app.config import get_settings
from backend.app.constants import EXPORT_TASK_NAME, REAP_TASK_NAME, SWEEP_TASK_NAME
from backend.app.container import ExportServices, build_services
from backend.app.queue.celery_queue import CeleryJobQueue, LeaseHeldError
from backend.app.schemas.export import ExportJob
from backend.app.services.artifact_store import ArtifactStore
from worker.celery_app import app, celery_retry_options
from worker.export_worker import ExportWorker

logger = logging.getLogger(__name__)

settings = get_settings()


class ExportRetryScheduled(Exception):
    """A delivery failed and the job has attempts left; Celery schedules the retry."""


async def execute_export_job(queue: CeleryJobQueue, worker: ExportWorker, job_id: str) -> ExportJob | None:
    """
    Run one broker delivery of a job and record its outcome.

    Returns the job as stored afterwards, or None when the job is unknown or
    already finished.

    Raises:
        LeaseHeldError: Another delivery is still running the job
    """
    job = await queue.claim(job_id)
    if job is None:
        logger.info(f"Skipping delivery of export job {job_id}: unknown or already finished")
        return None
    if job.status == "processing":
        (result,) = await worker.process_batch([job])
        await queue.acknowledge(job, result)
    await worker.settle(job_id)
    return await queue.get_job(job_id)


def _celery_services() -> tuple[ExportServices, CeleryJobQueue]:
    services = build_services(settings)
    if not isinstance(services.queue, CeleryJobQueue):
        raise RuntimeError(f"Celery tasks need queue_backend=celery, not {settings.queue_backend}")
    return services, services.queue


async def _run_export(job_id: str) -> ExportJob | None:
    services, queue = _celery_services()
    try:
        worker = ExportWorker(
            queue=queue,
            assembler=services.assembler,
            content=services.content,
            streamer=services.streamer,
            store=services.store,
        )
        return await execute_export_job(queue, worker, job_id)
    finally:
        await services.close()


async def _reap() -> int:
    services, queue = _celery_services()
    try:
        return await queue.reap()
    finally:
        await services.close()


@app.task(
    bind=True,
    name=EXPORT_TASK_NAME,
    autoretry_for=(ExportRetryScheduled,),
    **celery_retry_options(settings),
)
def run_export_job(self, job_id: str) -> dict:
    """
    Export one job.

    Args:
        job_id: Export job id, also the Celery task id

    Returns:
        The job id and the status it ended in
    """
    logger.info(f"Delivery {self.request.retries + 1} of export job {job_id}")

    try:
        job = asyncio.run(_run_export(job_id))
    except LeaseHeldError as e:
        # The holder finishes it, or the reaper recovers it once the lease lapses
        logger.info(f"Dropping duplicate delivery: {e}")
        return {"job_id": job_id, "status": "leased"}

    if job is None:
        return {"job_id": job_id, "status": "skipped"}
    if job.status == "processing":
        raise ExportRetryScheduled(f"Export job {job_id} failed on attempt {job.attempts}: {job.error}")
    return {"job_id": job_id, "status": job.status}


@app.task(name=REAP_TASK_NAME)
def reap_export_jobs() -> int:
    """Recover export jobs whose deliveries were lost."""
    return asyncio.run(_reap())


@app.task(name=SWEEP_TASK_NAME)
def sweep_exports() -> int:
    """Remove expired export archives."""
    removed = ArtifactStore.from_settings(settings).sweep()
    logger.info(f"Artifact sweep removed {removed} expired export(s)")
    return removed
