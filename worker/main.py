"""
Standalone export worker.

Usage:
    python -m worker.main
    python -m worker.main --batch-size 10 --poll-interval 1

With QUEUE_BACKEND=celery this starts a Celery worker (with an embedded beat
unless CELERY_WORKER_BEAT=false) instead of the polling worker.
"""

import argparse
import asyncio
import logging

from backend.app.config import Settings, get_settings
from backend.app.container import build_services
from backend.app.core.logging import setup_logging
from worker.export_worker import ExportWorker
from worker.lifecycle import WorkerLifecycle

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the USFM export worker")
    parser.add_argument("--batch-size", type=int, help="Jobs handled concurrently per batch")
    parser.add_argument("--poll-interval", type=float, help="Seconds between empty polls")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Apply command line overrides on top of the environment settings."""
    settings = get_settings()
    overrides = {}
    if args.batch_size is not None:
        overrides["queue_batch_size"] = args.batch_size
    if args.poll_interval is not None:
        overrides["queue_poll_interval"] = args.poll_interval
    return settings.model_copy(update=overrides) if overrides else settings


async def run_worker(settings: Settings) -> None:
    services = build_services(settings)
    await services.database.init()

    worker = ExportWorker(
        queue=services.queue,
        assembler=services.assembler,
        content=services.content,
        streamer=services.streamer,
        store=services.store,
    )
    lifecycle = WorkerLifecycle(
        settings,
        services.queue,
        worker,
        services.store,
        on_stopped=services.database.close,
    )
    await lifecycle.run()


def celery_worker_argv(settings: Settings) -> list[str]:
    argv = [
        "worker",
        f"--loglevel={settings.log_level}",
        f"--concurrency={settings.queue_batch_size}",
        f"--queues={settings.queue_name}",
    ]
    if settings.celery_worker_beat:
        argv.append("--beat")
    return argv


def run_celery_worker(settings: Settings) -> None:
    from worker.celery_app import app

    app.worker_main(celery_worker_argv(settings))


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = resolve_settings(args)
    setup_logging(settings, component="worker")
    logger.info(f"Starting export worker ({settings.app_env}, queue backend: {settings.queue_backend})")
    if settings.queue_backend == "celery":
        run_celery_worker(settings)
    else:
        asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
