"""Export-related Pydantic schemas."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.app.core.exceptions import ErrorKind

ExportJobStatus = Literal["queued", "processing", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Allowed forward transitions; terminal states have none
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"processing", "failed"}),
    "processing": frozenset({"processing", "completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportJobData(BaseModel):
    """Payload submitted to the job queue."""

    project_unit_id: int
    book_ids: list[int] | None = None
    requested_by: str | None = None
    requested_at: datetime = Field(default_factory=utcnow)


class ExportJob(BaseModel):
    """State of one export job as owned by the job queue."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_unit_id: int
    book_ids: list[int] | None = None
    requested_by: str | None = None
    requested_at: datetime
    status: ExportJobStatus = "queued"
    progress: int = 0
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    filename: str | None = None
    size_bytes: int | None = None
    project_name: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    # Delivery bookkeeping, not part of the status surface
    run_after: datetime = Field(default_factory=utcnow)
    lease_expires_at: datetime | None = None

    @field_validator(
        "requested_at",
        "started_at",
        "completed_at",
        "expires_at",
        "created_at",
        "run_after",
        "lease_expires_at",
    )
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        # Some stores (SQLite) hand back naive timestamps; they are always UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def data(self) -> ExportJobData:
        return ExportJobData(
            project_unit_id=self.project_unit_id,
            book_ids=self.book_ids,
            requested_by=self.requested_by,
            requested_at=self.requested_at,
        )


class JobResult(BaseModel):
    """Outcome of one job within a worker batch."""

    job_id: str
    status: Literal["completed", "failed"]
    filename: str | None = None
    size_bytes: int | None = None
    expires_at: datetime | None = None
    project_name: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "completed"


class ExportJobRequest(BaseModel):
    """Request schema for starting a background export."""

    book_ids: list[int] | None = None
    requested_by: str | None = None


class ExportJobAccepted(BaseModel):
    """Response schema for an accepted background export."""

    job_id: str
    status: ExportJobStatus
    status_url: str


class ExportJobStatusResponse(BaseModel):
    """Response schema for export job status."""

    job_id: str
    status: ExportJobStatus
    progress: int = 0
    attempts: int = 0
    filename: str | None = None
    file_size: int | None = None
    project_name: str | None = None
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    download_url: str | None = None


class ExportableBook(BaseModel):
    """A book of a project unit with its translation coverage."""

    book_id: int
    book_code: str
    book_name: str
    verse_count: int
    translated_count: int
