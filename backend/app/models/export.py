"""Export job model."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.models.base import Base, TimestampMixin


class ExportJobRecord(Base, TimestampMixin):
    """Durable USFM export job; also the work item of the SQL queue backend."""

    __tablename__ = "usfm_export_jobs"
    __table_args__ = (Index("ix_usfm_export_jobs_claim", "queue_name", "status", "run_after"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    queue_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Request
    project_unit_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    book_ids: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # State
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Result
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Delivery bookkeeping
    run_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
