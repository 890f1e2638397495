"""
Tests for the worker lifecycle: polling, maintenance and graceful shutdown.
"""

import asyncio

import pytest

from backend.app.schemas.export import ExportJobData
from worker.lifecycle import WorkerLifecycle, WorkerMetrics, WorkerState

PROJECT_UNIT_ID = 10
GEN = 1


@pytest.fixture
def fast_settings(settings):
    return settings.model_copy(
        update={
            "queue_poll_interval": 0.01,
            "worker_shutdown_grace_period": 1.0,
            "worker_shutdown_poll_interval": 0.01,
        }
    )


@pytest.fixture
def lifecycle(fast_settings, queue, worker, store) -> WorkerLifecycle:
    return WorkerLifecycle(fast_settings, queue, worker, store)


async def submit(queue) -> str:
    return await queue.submit(ExportJobData(project_unit_id=PROJECT_UNIT_ID, book_ids=[GEN]))


async def wait_for_status(queue, job_id: str, status: str, timeout: float = 5.0) -> None:
    async def poll():
        while (await queue.get_job(job_id)).status != status:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestRun:
    """The worker polls until asked to stop."""

    async def test_processes_jobs_then_stops_on_request(self, lifecycle, queue):
        job_id = await submit(queue)
        task = asyncio.create_task(lifecycle.run(install_signals=False))

        await wait_for_status(queue, job_id, "completed")
        lifecycle.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        assert lifecycle.state == WorkerState.STOPPED
        assert lifecycle.metrics.processed == 1
        assert lifecycle.metrics.failed == 0
        assert lifecycle.metrics.batches >= 1
        assert lifecycle.metrics.in_flight == 0

    async def test_on_stopped_callback_runs(self, fast_settings, queue, worker, store):
        stopped = []

        async def on_stopped():
            stopped.append(True)

        lifecycle = WorkerLifecycle(fast_settings, queue, worker, store, on_stopped=on_stopped)
        task = asyncio.create_task(lifecycle.run(install_signals=False))
        await asyncio.sleep(0.05)
        lifecycle.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        assert stopped == [True]

    async def test_repeated_shutdown_request_is_ignored(self, lifecycle):
        task = asyncio.create_task(lifecycle.run(install_signals=False))
        await asyncio.sleep(0.05)
        lifecycle.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        lifecycle.request_shutdown()
        await lifecycle.shutdown()

        assert lifecycle.state == WorkerState.STOPPED


class TestDrain:
    """In-flight jobs get a bounded grace period."""

    async def test_in_flight_job_finishes_during_drain(self, lifecycle, queue, worker, monkeypatch):
        started = asyncio.Event()
        release = asyncio.Event()
        real_export = worker.export

        async def slow_export(job):
            started.set()
            await release.wait()
            return await real_export(job)

        monkeypatch.setattr(worker, "export", slow_export)
        job_id = await submit(queue)
        task = asyncio.create_task(lifecycle.run(install_signals=False))

        await asyncio.wait_for(started.wait(), timeout=5)
        lifecycle.request_shutdown()
        await asyncio.sleep(0.05)
        assert lifecycle.state == WorkerState.DRAINING
        release.set()
        await asyncio.wait_for(task, timeout=5)

        assert (await queue.get_job(job_id)).status == "completed"
        assert lifecycle.state == WorkerState.STOPPED

    async def test_forced_shutdown_leaves_job_for_redelivery(self, lifecycle, queue, worker, monkeypatch):
        started = asyncio.Event()

        async def stuck_export(job):
            started.set()
            await asyncio.Event().wait()

        monkeypatch.setattr(worker, "export", stuck_export)
        job_id = await submit(queue)
        task = asyncio.create_task(lifecycle.run(install_signals=False))

        await asyncio.wait_for(started.wait(), timeout=5)
        lifecycle.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        job = await queue.get_job(job_id)
        assert lifecycle.state == WorkerState.STOPPED
        assert job.status == "processing"
        assert job.lease_expires_at is not None
        assert worker.active_jobs == 0


class TestMaintenance:
    """Periodic sweep and heartbeat."""

    async def test_sweep_removes_expired_artifacts(self, lifecycle, store, clock):
        store.save("old-job", b"data")
        clock.advance(3601)

        assert await lifecycle.sweep() == 1
        assert store.list_artifacts() == []

    async def test_heartbeat_reports_counters(self, lifecycle, queue):
        await submit(queue)
        lifecycle.metrics.record_success(1500)
        lifecycle.metrics.record_failure(500)

        snapshot = await lifecycle.heartbeat()

        assert snapshot["state"] == "running"
        assert snapshot["processed"] == 1
        assert snapshot["failed"] == 1
        assert snapshot["avg_processing_time_seconds"] == 1.0
        assert snapshot["queue_depth"] == 1
        assert snapshot["active_jobs"] == 0
        assert snapshot["memory_rss_bytes"] > 0


class TestWorkerMetrics:
    def test_average_without_jobs(self):
        assert WorkerMetrics().avg_processing_seconds == 0.0

    def test_hooks_feed_counters(self):
        metrics = WorkerMetrics()
        hooks = metrics.as_hooks()

        hooks.on_batch_start(3)
        assert metrics.in_flight == 3
        hooks.on_job_success(100)
        hooks.on_job_failure(300)
        hooks.on_batch_end(3)

        assert metrics.batches == 1
        assert metrics.in_flight == 0
        assert metrics.processed == 1
        assert metrics.failed == 1
        assert metrics.avg_processing_seconds == 0.2
