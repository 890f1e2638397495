"""Custom exceptions for the application.

Every error raised by the export pipeline carries an :class:`ErrorKind`
assigned where it is raised. Callers branch on the kind, never on the
message text.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of export pipeline failures."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TRANSIENT_INFRA = "transient_infra"
    PERMANENT_CONTENT = "permanent_content"


class ExportServiceError(Exception):
    """Base exception for the scripture export service."""

    kind: ErrorKind = ErrorKind.TRANSIENT_INFRA

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ExportServiceError):
    """Malformed request or book ids foreign to the project unit."""

    kind = ErrorKind.VALIDATION


class NotFoundError(ExportServiceError):
    """Missing books, project, job or artifact."""

    kind = ErrorKind.NOT_FOUND


class TransientInfraError(ExportServiceError):
    """Storage or queue connectivity failure; worth retrying."""

    kind = ErrorKind.TRANSIENT_INFRA


class PermanentContentError(ExportServiceError):
    """Content that can never produce an archive, e.g. zero entries."""

    kind = ErrorKind.PERMANENT_CONTENT


class JobStateError(ExportServiceError):
    """Exception for invalid job state transitions."""

    kind = ErrorKind.VALIDATION


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the kind of any exception; unclassified errors count as transient."""
    if isinstance(exc, ExportServiceError):
        return exc.kind
    return ErrorKind.TRANSIENT_INFRA
