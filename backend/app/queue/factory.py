"""Select the job queue backend from settings."""

import logging

from backend.app.config import Settings
from backend.app.db.session import Database
from backend.app.queue.base import JobQueue, RetryPolicy
from backend.app.queue.celery_queue import CeleryJobQueue
from backend.app.queue.memory_queue import MemoryJobQueue
from backend.app.queue.redis_queue import RedisJobQueue
from backend.app.queue.sql_queue import SqlJobQueue

logger = logging.getLogger(__name__)


def create_job_queue(settings: Settings, database: Database | None = None) -> JobQueue:
    """
    Build the queue configured by ``queue_backend``.

    Args:
        settings: Application settings
        database: Required for the ``sql`` and ``celery`` backends

    Returns:
        A queue sharing the configured retry policy and queue name
    """
    policy = RetryPolicy.from_settings(settings)
    backend = settings.queue_backend

    if backend == "memory":
        queue: JobQueue = MemoryJobQueue(policy, name=settings.queue_name)
    elif backend == "sql":
        if database is None:
            raise ValueError("The sql queue backend needs a database")
        queue = SqlJobQueue(database, policy, name=settings.queue_name)
    elif backend == "redis":
        queue = RedisJobQueue.from_url(str(settings.redis_url), policy=policy, name=settings.queue_name)
    elif backend == "celery":
        if database is None:
            raise ValueError("The celery queue backend needs a database")
        from worker.celery_app import app as celery_app

        queue = CeleryJobQueue(database, celery_app, policy, name=settings.queue_name)
    else:
        raise ValueError(f"Unknown queue backend: {backend}")

    logger.info(f"Using {backend} job queue '{settings.queue_name}' (retry_limit={policy.retry_limit})")
    return queue
