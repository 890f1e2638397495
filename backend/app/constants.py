"""Application constants."""

import re
from typing import Final

# Books per verse query; keeps IN (...) lists short
VERSE_QUERY_BATCH_SIZE: Final[int] = 25

# Artifact naming
ARTIFACT_PREFIX: Final[str] = "export-"
ARTIFACT_SUFFIX: Final[str] = ".zip"
ARTIFACT_FILENAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^export-[A-Za-z0-9-]+\.zip$")

# Characters not allowed in a download filename
UNSAFE_FILENAME_CHARS: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*]')
# Control characters, CR and LF included; dropped from download filenames
CONTROL_CHARS: Final[re.Pattern[str]] = re.compile(r"[\x00-\x1f\x7f]")
# Download name used when nothing of the project name survives ASCII folding
FALLBACK_DOWNLOAD_NAME: Final[str] = "export.zip"

# Progress milestones reported while a job runs
PROGRESS_STARTED: Final[int] = 10
PROGRESS_PROJECT_RESOLVED: Final[int] = 20
PROGRESS_ARCHIVED: Final[int] = 50
PROGRESS_STORED: Final[int] = 80
PROGRESS_DONE: Final[int] = 100

# Headers for downloads that must never be cached
NO_CACHE_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Celery task names, shared by the publisher and the worker
EXPORT_TASK_NAME: Final[str] = "worker.tasks.usfm_export.run_export_job"
REAP_TASK_NAME: Final[str] = "worker.tasks.usfm_export.reap_export_jobs"
SWEEP_TASK_NAME: Final[str] = "worker.tasks.usfm_export.sweep_exports"
