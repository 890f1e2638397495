"""Retry helper for transient database failures."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from backend.app.config import Settings
from backend.app.core.exceptions import TransientInfraError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DbRetryConfig:
    """Exponential backoff parameters for database reads."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    factor: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DbRetryConfig":
        return cls(
            max_attempts=settings.db_retry_max_attempts,
            base_delay=settings.db_retry_base_delay,
            max_delay=settings.db_retry_max_delay,
            factor=settings.db_retry_factor,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)


def is_retryable(exc: BaseException) -> bool:
    """Connection-level failures are retryable; constraint and syntax errors are not."""
    if isinstance(exc, (OperationalError, InterfaceError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated
    return isinstance(exc, OSError)


async def with_db_retry(
    operation: Callable[[], Awaitable[T]],
    config: DbRetryConfig,
    description: str = "database operation",
) -> T:
    """
    Run an async database operation, retrying connection failures.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        config: Backoff parameters
        description: Used in log lines and the final error message

    Returns:
        Whatever the operation returns

    Raises:
        TransientInfraError: When every attempt failed with a retryable error
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= config.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise TransientInfraError(
                    f"{description} failed after {attempt} attempts",
                    details={"error": str(e)},
                ) from e
            delay = config.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)
