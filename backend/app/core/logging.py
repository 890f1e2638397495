"""Logging configuration for the API and worker processes."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from backend.app.config import Settings

LOG_FORMAT = "%(asctime)s - {component} - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers kept at WARNING unless debugging
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "redis")


def setup_logging(settings: Settings, component: str = "api") -> None:
    """
    Route every log record to stdout, and to a rotating file if configured.

    Args:
        settings: Application settings
        component: Process tag included in each line ("api" or "worker")
    """
    formatter = logging.Formatter(LOG_FORMAT.format(component=component), datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL echo is only wanted while debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured for {component}: level={settings.log_level} env={settings.app_env}"
    )
