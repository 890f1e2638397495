"""Job queue interface and the delivery rules shared by every backend."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from backend.app.config import Settings
from backend.app.core.exceptions import ErrorKind, JobStateError, error_kind
from backend.app.schemas.export import (
    STATUS_TRANSITIONS,
    ExportJob,
    ExportJobData,
    JobResult,
    utcnow,
)

logger = logging.getLogger(__name__)

JobHandler = Callable[[list[ExportJob]], Awaitable[list[JobResult]]]
# Called with a job id once its delivery has been acknowledged
SettledCallback = Callable[[str], Awaitable[None]]
Clock = Callable[[], datetime]

# Kinds that retrying cannot fix; only honoured when the policy says so
NON_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.PERMANENT_CONTENT, ErrorKind.VALIDATION, ErrorKind.NOT_FOUND}
)


@dataclass(frozen=True)
class RetryPolicy:
    """Redelivery rules for failed or unacknowledged jobs."""

    retry_limit: int = 3
    retry_delay: float = 60.0
    retry_backoff: bool = True
    retry_delay_max: float = 900.0
    expire_in_seconds: float = 3600.0
    retention_seconds: float = 86400.0
    retry_permanent_errors: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            retry_limit=settings.queue_retry_limit,
            retry_delay=settings.queue_retry_delay,
            retry_backoff=settings.queue_retry_backoff,
            retry_delay_max=settings.queue_retry_delay_max,
            expire_in_seconds=settings.queue_expire_in_seconds,
            retention_seconds=settings.queue_retention_seconds,
            retry_permanent_errors=settings.queue_retry_permanent_errors,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed delivery."""
        if not self.retry_backoff:
            return min(self.retry_delay, self.retry_delay_max)
        return min(self.retry_delay * 2 ** (attempt - 1), self.retry_delay_max)

    def should_retry(self, attempts: int, kind: ErrorKind | None) -> bool:
        """attempts counts deliveries so far; the first delivery is not a retry."""
        if attempts > self.retry_limit:
            return False
        if not self.retry_permanent_errors and kind in NON_RETRYABLE_KINDS:
            return False
        return True


def transition(job: ExportJob, status: str, **changes: Any) -> ExportJob:
    """Return a copy of job moved to status; backwards moves are rejected."""
    if status not in STATUS_TRANSITIONS[job.status]:
        raise JobStateError(
            f"Invalid transition for job {job.id}: {job.status} -> {status}",
            details={"job_id": job.id, "from": job.status, "to": status},
        )
    return job.model_copy(update={"status": status, **changes})


class JobQueue(ABC):
    """
    At-least-once work queue for export jobs.

    Backends implement storage (submit, get_job, fetch, _update, depth);
    acknowledgement, retry scheduling and the polling loop live here.
    """

    backend_name = "abstract"

    def __init__(self, policy: RetryPolicy | None = None, name: str = "usfm-export", clock: Clock = utcnow):
        self.policy = policy or RetryPolicy()
        self.name = name
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._working = False

    # ==================== Storage ====================

    @abstractmethod
    async def submit(self, data: ExportJobData) -> str:
        """Persist a new queued job and return its id."""

    @abstractmethod
    async def get_job(self, job_id: str) -> ExportJob | None:
        """Current state of a job, or None if unknown."""

    @abstractmethod
    async def fetch(self, limit: int) -> list[ExportJob]:
        """Reap expired deliveries, then claim up to limit ready jobs."""

    @abstractmethod
    async def _update(
        self, job_id: str, mutate: Callable[[ExportJob], ExportJob | None]
    ) -> ExportJob | None:
        """
        Atomically apply mutate to the stored job.

        Returns the stored job when mutate produced a change, otherwise None
        (unknown job, or mutate returned None).
        """

    @abstractmethod
    async def depth(self) -> int:
        """Jobs not yet in a terminal state."""

    async def close(self) -> None:
        """Release backend connections."""

    # ==================== Delivery rules ====================

    def _new_job(self, job_id: str, data: ExportJobData) -> ExportJob:
        now = self._clock()
        return ExportJob(
            id=job_id,
            project_unit_id=data.project_unit_id,
            book_ids=data.book_ids,
            requested_by=data.requested_by,
            requested_at=data.requested_at,
            status="queued",
            created_at=now,
            run_after=now,
        )

    def _is_ready(self, job: ExportJob, now: datetime) -> bool:
        if job.status == "queued":
            return True
        return job.status == "processing" and job.lease_expires_at is None and job.run_after <= now

    def _claim(self, job: ExportJob, now: datetime) -> ExportJob:
        return transition(
            job,
            "processing",
            attempts=job.attempts + 1,
            started_at=job.started_at or now,
            lease_expires_at=now + timedelta(seconds=self.policy.expire_in_seconds),
            progress=0,
        )

    def _failure(self, job: ExportJob, error: str, kind: ErrorKind | None, now: datetime) -> ExportJob:
        """Schedule a redelivery, or fail the job for good once the budget is spent."""
        if job.status == "processing" and self.policy.should_retry(job.attempts, kind):
            delay = self.policy.delay_for(job.attempts)
            logger.warning(
                f"Job {job.id} failed on attempt {job.attempts}, retrying in {delay:.0f}s: {error}"
            )
            return transition(
                job,
                "processing",
                error=error,
                error_kind=kind,
                run_after=now + timedelta(seconds=delay),
                lease_expires_at=None,
            )

        logger.error(f"Job {job.id} failed after {job.attempts} attempt(s): {error}")
        return transition(
            job,
            "failed",
            error=error,
            error_kind=kind,
            completed_at=now,
            lease_expires_at=None,
        )

    def _expire_if_due(self, job: ExportJob, now: datetime) -> ExportJob | None:
        """Handle deliveries whose lease ran out and jobs never claimed in time."""
        if job.status == "queued":
            if job.created_at + timedelta(seconds=self.policy.retention_seconds) <= now:
                logger.warning(f"Job {job.id} expired before being claimed")
                return transition(
                    job,
                    "failed",
                    error="Job expired before being claimed",
                    error_kind=ErrorKind.TRANSIENT_INFRA,
                    completed_at=now,
                )
            return None

        if job.status == "processing" and job.lease_expires_at is not None and job.lease_expires_at <= now:
            return self._failure(
                job,
                "Job was not acknowledged before its expiry window",
                ErrorKind.TRANSIENT_INFRA,
                now,
            )
        return None

    # ==================== Acknowledgement ====================

    async def complete(self, job_id: str, result: JobResult) -> ExportJob | None:
        """Mark a delivered job completed with its artifact metadata."""
        now = self._clock()

        def mutate(job: ExportJob) -> ExportJob | None:
            if job.is_terminal:
                logger.warning(f"Ignoring completion of job {job_id}: already {job.status}")
                return None
            return transition(
                job,
                "completed",
                progress=100,
                completed_at=now,
                expires_at=result.expires_at,
                filename=result.filename,
                size_bytes=result.size_bytes,
                project_name=result.project_name or job.project_name,
                error=None,
                error_kind=None,
                lease_expires_at=None,
            )

        return await self._update(job_id, mutate)

    async def fail(self, job_id: str, error: str, kind: ErrorKind | None = None) -> ExportJob | None:
        """Record a failed delivery; the retry policy decides what happens next."""
        now = self._clock()

        def mutate(job: ExportJob) -> ExportJob | None:
            if job.is_terminal:
                logger.warning(f"Ignoring failure of job {job_id}: already {job.status}")
                return None
            return self._failure(job, error, kind, now)

        return await self._update(job_id, mutate)

    async def update_progress(self, job_id: str, progress: int, **fields: Any) -> ExportJob | None:
        """Report progress of an active job; ignored once the job is terminal."""
        progress = max(0, min(100, progress))

        def mutate(job: ExportJob) -> ExportJob | None:
            if job.status != "processing":
                return None
            return job.model_copy(update={"progress": progress, **fields})

        return await self._update(job_id, mutate)

    # ==================== Consuming ====================

    async def acknowledge(self, job: ExportJob, result: JobResult | None) -> None:
        """Apply a handler result to the stored job; failures are left to lease expiry."""
        try:
            if result is None:
                await self.fail(job.id, "Handler returned no result for job", ErrorKind.TRANSIENT_INFRA)
            elif result.ok:
                await self.complete(job.id, result)
            else:
                await self.fail(job.id, result.error or "Unknown error", result.error_kind)
        except Exception as e:
            # Left to lease expiry, which redelivers it
            logger.error(f"Failed to acknowledge job {job.id}: {e}")

    async def _settle(
        self, job: ExportJob, result: JobResult | None, on_settled: SettledCallback | None
    ) -> None:
        await self.acknowledge(job, result)
        if on_settled is None:
            return
        try:
            await on_settled(job.id)
        except Exception as e:
            logger.error(f"Post-acknowledgement handling of job {job.id} failed: {e}")

    async def run_cycle(
        self, handler: JobHandler, batch_size: int, on_settled: SettledCallback | None = None
    ) -> int:
        """
        Fetch one batch, hand it to the handler and apply the results.

        on_settled runs for every job of the batch after its result has been
        recorded, whatever the recorded outcome. Returns the batch size.
        """
        batch = await self.fetch(batch_size)
        if not batch:
            return 0

        try:
            results = await handler(batch)
        except Exception as e:
            logger.error(f"Handler failed for a batch of {len(batch)} job(s): {e}")
            kind = error_kind(e)
            for job in batch:
                await self._settle(
                    job,
                    JobResult(job_id=job.id, status="failed", error=str(e), error_kind=kind),
                    on_settled,
                )
            return len(batch)

        by_id = {result.job_id: result for result in results}
        for job in batch:
            await self._settle(job, by_id.get(job.id), on_settled)
        return len(batch)

    async def work(
        self,
        handler: JobHandler,
        batch_size: int,
        poll_interval: float,
        on_settled: SettledCallback | None = None,
    ) -> None:
        """
        Poll for batches until :meth:`stop` is called.

        Args:
            handler: Processes a batch and returns one result per job
            batch_size: Maximum jobs handed to the handler at once
            poll_interval: Seconds to wait after an empty poll
            on_settled: Called with each job id after its result is recorded
        """
        self._working = True
        logger.info(
            f"Worker polling queue '{self.name}' ({self.backend_name}): "
            f"batch_size={batch_size}, poll_interval={poll_interval}s"
        )

        while not self._stop_event.is_set():
            try:
                processed = await self.run_cycle(handler, batch_size, on_settled)
            except Exception as e:
                logger.error(f"Failed to poll queue '{self.name}': {e}")
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        self._working = False
        logger.info(f"Stopped polling queue '{self.name}'")

    def stop(self) -> None:
        """Stop pulling new batches; the batch in flight runs to completion."""
        self._stop_event.set()

    @property
    def is_working(self) -> bool:
        return self._working and not self._stop_event.is_set()
