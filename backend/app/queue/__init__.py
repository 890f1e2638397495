"""Export job queue backends."""

from backend.app.queue.base import JobHandler, JobQueue, RetryPolicy
from backend.app.queue.celery_queue import CeleryJobQueue
from backend.app.queue.factory import create_job_queue
from backend.app.queue.memory_queue import MemoryJobQueue
from backend.app.queue.redis_queue import RedisJobQueue
from backend.app.queue.sql_queue import SqlJobQueue

__all__ = [
    "CeleryJobQueue",
    "JobHandler",
    "JobQueue",
    "MemoryJobQueue",
    "RedisJobQueue",
    "RetryPolicy",
    "SqlJobQueue",
    "create_job_queue",
]
