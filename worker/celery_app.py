"""Celery application configuration for the celery job queue backend."""

from typing import Any

from celery import Celery

from backend.app.config import Settings, get_settings
from backend.app.constants import REAP_TASK_NAME, SWEEP_TASK_NAME


def celery_retry_options(settings: Settings) -> dict[str, Any]:
    """
    Task retry options matching the queue retry policy.

    Celery's exponential countdown for retry n (0-based) is
    ``min(retry_backoff_max, retry_backoff * 2 ** n)``, the same delay the
    policy records as ``run_after`` for the failed delivery.
    """
    return {
        "max_retries": settings.queue_retry_limit,
        "default_retry_delay": settings.queue_retry_delay,
        "retry_backoff": max(1, round(settings.queue_retry_delay)) if settings.queue_retry_backoff else False,
        "retry_backoff_max": int(settings.queue_retry_delay_max),
        "retry_jitter": False,
    }


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "usfm_export",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["worker.tasks.usfm_export"],
    )

    app.conf.update(
        # Task settings
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,

        # Task tracking
        task_track_started=True,
        task_time_limit=settings.queue_expire_in_seconds,
        task_soft_time_limit=int(settings.queue_expire_in_seconds * 0.9),

        # Acknowledge after the task ran; a lost worker means redelivery
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        # Must outlast the longest run and the longest retry countdown
        broker_transport_options={
            "visibility_timeout": int(max(settings.queue_expire_in_seconds, settings.queue_retry_delay_max)),
        },

        # Worker settings
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.queue_batch_size,
        broker_connection_retry_on_startup=True,
        # Logging is configured by setup_logging
        worker_hijack_root_logger=False,

        # Result backend settings
        result_expires=settings.queue_retention_seconds,

        task_default_queue=settings.queue_name,
    )

    app.conf.beat_schedule = {
        "reap-export-jobs": {
            "task": REAP_TASK_NAME,
            "schedule": settings.celery_reap_interval,
        },
        "sweep-exports": {
            "task": SWEEP_TASK_NAME,
            "schedule": settings.worker_sweep_interval,
        },
    }
    return app


app = create_celery_app(get_settings())


if __name__ == "__main__":
    app.start()
