"""Celery task definitions."""

# Import tasks to register them with Celery
from worker.tasks import usfm_export

__all__ = ["usfm_export"]
