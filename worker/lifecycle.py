"""Worker process lifecycle: polling, periodic maintenance and graceful shutdown."""

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import psutil
from starlette.concurrency import run_in_threadpool

from backend.app.config import Settings
from backend.app.queue.base import JobQueue
from backend.app.services.artifact_store import ArtifactStore, format_bytes
from worker.export_worker import ExportWorker, WorkerHooks

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class WorkerMetrics:
    """Counters fed by the export worker's hooks."""

    batches: int = 0
    # Jobs of batches handed to the worker and not yet finished
    in_flight: int = 0
    processed: int = 0
    failed: int = 0
    total_duration_ms: float = 0.0

    def record_batch_start(self, count: int) -> None:
        self.batches += 1
        self.in_flight += count

    def record_batch_end(self, count: int) -> None:
        self.in_flight = max(0, self.in_flight - count)

    def record_success(self, duration_ms: float) -> None:
        self.processed += 1
        self.total_duration_ms += duration_ms

    def record_failure(self, duration_ms: float) -> None:
        self.failed += 1
        self.total_duration_ms += duration_ms

    @property
    def avg_processing_seconds(self) -> float:
        finished = self.processed + self.failed
        return self.total_duration_ms / finished / 1000 if finished else 0.0

    def as_hooks(self) -> WorkerHooks:
        return WorkerHooks(
            on_batch_start=self.record_batch_start,
            on_batch_end=self.record_batch_end,
            on_job_success=self.record_success,
            on_job_failure=self.record_failure,
        )


class WorkerLifecycle:
    """
    Drives one worker process through running, draining and stopped.

    While running it polls the queue and, on independent timers, sweeps
    expired artifacts and logs a heartbeat. A termination signal stops
    polling; in-flight jobs get a bounded grace period to finish before the
    process gives up on them and stops anyway.
    """

    def __init__(
        self,
        settings: Settings,
        queue: JobQueue,
        worker: ExportWorker,
        store: ArtifactStore,
        on_stopped: Callable[[], Awaitable[None]] | None = None,
    ):
        self.settings = settings
        self.queue = queue
        self.worker = worker
        self.store = store
        self.on_stopped = on_stopped

        self.state = WorkerState.RUNNING
        self.metrics = WorkerMetrics()
        self.worker.hooks = self.metrics.as_hooks()

        self._started_at = time.monotonic()
        self._shutdown_requested = asyncio.Event()
        self._work_task: asyncio.Task | None = None
        self._periodic_tasks: list[asyncio.Task] = []

    # ==================== Signals ====================

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(sig, lambda signum, frame: self.request_shutdown(signal.Signals(signum)))

    def request_shutdown(self, sig: signal.Signals | None = None) -> None:
        if sig is not None:
            logger.info(f"Worker received {sig.name} signal")
        if self.state != WorkerState.RUNNING:
            logger.info(f"Shutdown already in progress ({self.state.value})")
            return
        self._shutdown_requested.set()

    # ==================== Running ====================

    async def run(self, install_signals: bool = True) -> None:
        """Run until a shutdown is requested or the polling loop dies, then drain."""
        if install_signals:
            self.install_signal_handlers()

        await run_in_threadpool(self.store.ensure_directory)
        self._started_at = time.monotonic()
        self._work_task = asyncio.create_task(
            self.queue.work(
                self.worker.process_batch,
                batch_size=self.settings.queue_batch_size,
                poll_interval=self.settings.queue_poll_interval,
                on_settled=self.worker.settle,
            ),
            name="export-queue-work",
        )
        self._periodic_tasks = [
            asyncio.create_task(
                self._every(self.settings.worker_sweep_interval, self.sweep, "Artifact sweep"),
                name="export-artifact-sweep",
            ),
            asyncio.create_task(
                self._every(self.settings.worker_heartbeat_interval, self.heartbeat, "Heartbeat"),
                name="export-heartbeat",
            ),
        ]
        logger.info(
            f"Export worker running: batch_size={self.settings.queue_batch_size}, "
            f"poll_interval={self.settings.queue_poll_interval}s"
        )

        shutdown_waiter = asyncio.create_task(self._shutdown_requested.wait())
        done, _ = await asyncio.wait(
            {self._work_task, shutdown_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if self._work_task in done and self._work_task.exception() is not None:
            logger.error(f"Queue polling stopped unexpectedly: {self._work_task.exception()}")
        shutdown_waiter.cancel()

        await self.shutdown()

    async def _every(self, interval: float, action: Callable[[], Awaitable[Any]], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception as e:
                logger.error(f"{name} failed: {e}")

    async def sweep(self) -> int:
        removed = await run_in_threadpool(self.store.sweep)
        logger.info(f"Artifact sweep removed {removed} expired export(s)")
        return removed

    async def heartbeat(self) -> dict[str, Any]:
        """Log and return the aggregate worker counters."""
        try:
            queue_depth: int | None = await self.queue.depth()
        except Exception as e:
            logger.warning(f"Could not read queue depth: {e}")
            queue_depth = None

        memory = psutil.Process().memory_info()
        snapshot = {
            "state": self.state.value,
            "uptime_seconds": round(time.monotonic() - self._started_at),
            "active_jobs": self.worker.active_jobs,
            "in_flight": self.metrics.in_flight,
            "processed": self.metrics.processed,
            "failed": self.metrics.failed,
            "avg_processing_time_seconds": round(self.metrics.avg_processing_seconds, 2),
            "queue_depth": queue_depth,
            "memory_rss_bytes": memory.rss,
            "memory_vms_bytes": memory.vms,
        }
        logger.info(
            f"Worker heartbeat: uptime={snapshot['uptime_seconds']}s "
            f"active={snapshot['active_jobs']} in_flight={snapshot['in_flight']} "
            f"processed={snapshot['processed']} "
            f"failed={snapshot['failed']} avg={snapshot['avg_processing_time_seconds']}s "
            f"queue_depth={queue_depth} rss={format_bytes(memory.rss)}"
        )
        return snapshot

    # ==================== Shutdown ====================

    def _in_flight(self) -> bool:
        polling = self._work_task is not None and not self._work_task.done()
        return polling or self.worker.active_jobs > 0

    async def drain(self) -> bool:
        """Wait for in-flight work, polling at a fixed interval. False if the grace period ran out."""
        grace = self.settings.worker_shutdown_grace_period
        deadline = time.monotonic() + grace
        while self._in_flight():
            if time.monotonic() >= deadline:
                return False
            logger.info(f"Waiting for {self.worker.active_jobs} active job(s) to finish...")
            await asyncio.sleep(self.settings.worker_shutdown_poll_interval)
        return True

    async def shutdown(self) -> None:
        if self.state != WorkerState.RUNNING:
            return
        self.state = WorkerState.DRAINING
        logger.info("Worker draining: no new batches will be pulled")
        self.queue.stop()

        if not await self.drain():
            logger.warning(
                f"Forced shutdown after {self.settings.worker_shutdown_grace_period}s "
                f"with {self.worker.active_jobs} active job(s); they will be redelivered "
                f"after their lease expires"
            )

        tasks = [*self._periodic_tasks]
        if self._work_task is not None:
            tasks.append(self._work_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.queue.close()
        if self.on_stopped is not None:
            await self.on_stopped()

        self.state = WorkerState.STOPPED
        logger.info(
            f"Worker stopped: processed={self.metrics.processed} failed={self.metrics.failed}"
        )
