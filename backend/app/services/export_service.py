"""Export service: request validation, job submission and artifact delivery."""

import logging
import unicodedata
from collections.abc import Sequence
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from backend.app.constants import CONTROL_CHARS, FALLBACK_DOWNLOAD_NAME, UNSAFE_FILENAME_CHARS
from backend.app.container import ExportServices
from backend.app.core.exceptions import JobStateError, NotFoundError, PermanentContentError
from backend.app.schemas.export import (
    ExportableBook,
    ExportJob,
    ExportJobData,
    ExportJobRequest,
    ExportJobStatusResponse,
)
from backend.app.services.document_assembler import normalize_book_ids
from processing.export import ArchiveStream
from processing.usfm import render_usfm

logger = logging.getLogger(__name__)


def sanitize_filename(project_name: str) -> str:
    """Download name for a project archive: control characters dropped, unsafe ones replaced."""
    name = CONTROL_CHARS.sub("", project_name).strip()
    return f"{UNSAFE_FILENAME_CHARS.sub('_', name)}.zip"


def content_disposition(filename: str) -> str:
    """
    Attachment header value for a download name.

    Names outside ASCII get an ASCII ``filename`` for old clients plus the
    RFC 6266 ``filename*`` form carrying the real name.
    """
    if filename.isascii():
        return f'attachment; filename="{filename}"'

    folded = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    if not folded.removesuffix(".zip").strip(" ._"):
        folded = FALLBACK_DOWNLOAD_NAME
    return f"attachment; filename=\"{folded}\"; filename*=utf-8''{quote(filename)}"


class ExportService:
    """Service for synchronous and background USFM exports."""

    def __init__(self, services: ExportServices):
        self.services = services

    async def list_books(self, project_unit_id: int) -> list[ExportableBook]:
        books = await self.services.content.get_available_books(project_unit_id)
        logger.info(f"Project unit {project_unit_id} has {len(books)} exportable book(s)")
        return books

    async def _require_project_name(self, project_unit_id: int) -> str:
        project_name = await self.services.content.get_project_name(project_unit_id)
        if not project_name:
            raise NotFoundError(
                "Project not found for this project unit",
                details={"project_unit_id": project_unit_id},
            )
        return project_name

    async def open_stream(
        self, project_unit_id: int, book_ids: Sequence[int] | None = None
    ) -> tuple[str, ArchiveStream]:
        """
        Prepare a pipe-through export.

        Every check runs before the first byte is produced, so failures still
        reach the client as a structured error instead of a truncated archive.

        Returns:
            Tuple of (download filename, unstarted archive stream)
        """
        await self.services.assembler.validate_book_ids(project_unit_id, book_ids)
        project_name = await self._require_project_name(project_unit_id)

        documents = await self.services.assembler.assemble(project_unit_id, book_ids)
        if not documents:
            raise PermanentContentError(
                "No books available for export",
                details={"project_unit_id": project_unit_id, "book_ids": list(book_ids or [])},
            )

        stream = self.services.streamer.open((doc.entry_name, render_usfm(doc)) for doc in documents)
        logger.info(
            f"Streaming USFM export for project unit {project_unit_id}: {len(documents)} book(s)"
        )
        return sanitize_filename(project_name), stream

    async def enqueue(self, project_unit_id: int, request: ExportJobRequest) -> ExportJob:
        """Validate a background export request and hand it to the job queue."""
        book_ids = normalize_book_ids(request.book_ids)
        await self.services.assembler.validate_book_ids(project_unit_id, book_ids)

        data = ExportJobData(
            project_unit_id=project_unit_id,
            book_ids=book_ids,
            requested_by=request.requested_by,
        )
        job_id = await self.services.queue.submit(data)
        job = await self.services.queue.get_job(job_id)
        if job is None:
            raise NotFoundError("Export job not found", details={"job_id": job_id})

        logger.info(
            f"Queued USFM export job {job_id} for project unit {project_unit_id} "
            f"(books={book_ids or 'all'}, requested by {request.requested_by})"
        )
        return job

    async def get_job(self, job_id: str) -> ExportJob:
        job = await self.services.queue.get_job(job_id)
        if job is None:
            raise NotFoundError("Export job not found", details={"job_id": job_id})
        return job

    async def get_status(self, job_id: str, download_url: str | None = None) -> ExportJobStatusResponse:
        job = await self.get_job(job_id)
        return ExportJobStatusResponse(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            attempts=job.attempts,
            filename=job.filename,
            file_size=job.size_bytes,
            project_name=job.project_name,
            error=job.error,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            expires_at=job.expires_at,
            download_url=download_url if job.status == "completed" else None,
        )

    async def get_download(self, job_id: str) -> tuple[str, bytes]:
        """
        Read the archive of a completed job.

        Returns:
            Tuple of (download filename, archive bytes)

        Raises:
            NotFoundError: Unknown job, or its archive is gone or expired
            JobStateError: The job has not completed yet
            TransientInfraError: The archive exists but could not be read
        """
        job = await self.get_job(job_id)
        if job.status != "completed" or not job.filename:
            raise JobStateError(
                "Export not ready",
                details={"job_id": job_id, "status": job.status, "progress": job.progress},
            )

        data = await run_in_threadpool(self.services.store.get, job.filename)
        filename = sanitize_filename(job.project_name or job.id)
        logger.info(f"Serving export {job.filename} as {filename} ({len(data)} bytes)")
        return filename, data
