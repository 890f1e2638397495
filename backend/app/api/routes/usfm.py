"""USFM export API routes."""

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from backend.app.api.deps import ExportServiceDep
from backend.app.constants import NO_CACHE_HEADERS
from backend.app.core.exceptions import TransientInfraError, ValidationError
from backend.app.schemas.export import (
    ExportableBook,
    ExportJobAccepted,
    ExportJobRequest,
    ExportJobStatusResponse,
)
from backend.app.services.export_service import content_disposition
from processing.export import ArchiveStream

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_book_ids(raw: str | None) -> list[int] | None:
    """Parse a comma separated ``book_ids`` query value."""
    if raw is None or not raw.strip():
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError(
            "book_ids must be a comma separated list of integers",
            details={"book_ids": raw},
        ) from None


def download_headers(filename: str) -> dict[str, str]:
    return {
        "Content-Disposition": content_disposition(filename),
        **NO_CACHE_HEADERS,
    }


async def _pipe(stream: ArchiveStream, project_unit_id: int) -> AsyncIterator[bytes]:
    try:
        async for chunk in stream:
            yield chunk
        logger.info(
            f"USFM export completed for project unit {project_unit_id}: "
            f"{stream.entry_count} book(s), {stream.bytes_out} bytes"
        )
    except Exception as e:
        logger.error(f"Error writing export stream for project unit {project_unit_id}: {e}")
        raise


class ArchiveResponse(StreamingResponse):
    """
    Streams an archive and releases it however the response ends.

    Covers clients that disconnect before the first chunk, when the body
    iterator is never started and its own cleanup never runs.
    """

    def __init__(self, stream: ArchiveStream, project_unit_id: int, headers: dict[str, str]):
        super().__init__(_pipe(stream, project_unit_id), media_type="application/zip", headers=headers)
        self.stream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.stream.cleanup()


@router.get("/projects/{project_unit_id}/books", response_model=list[ExportableBook])
async def list_exportable_books(
    project_unit_id: int,
    service: ExportServiceDep,
) -> list[ExportableBook]:
    """
    List the books of a project unit with their verse and translation counts.
    """
    return await service.list_books(project_unit_id)


@router.get("/projects/{project_unit_id}/export")
async def export_project_usfm(
    project_unit_id: int,
    service: ExportServiceDep,
    book_ids: str | None = Query(default=None, description="Comma separated book ids"),
) -> ArchiveResponse:
    """
    Stream a ZIP with one USFM file per book straight to the client.
    """
    filename, stream = await service.open_stream(project_unit_id, parse_book_ids(book_ids))
    return ArchiveResponse(stream, project_unit_id, headers=download_headers(filename))


@router.post(
    "/projects/{project_unit_id}/export-jobs",
    response_model=ExportJobAccepted,
    status_code=202,
)
async def start_background_export(
    project_unit_id: int,
    export_request: ExportJobRequest,
    request: Request,
    service: ExportServiceDep,
) -> ExportJobAccepted:
    """
    Queue a background export; poll the returned status URL for progress.
    """
    job = await service.enqueue(project_unit_id, export_request)
    return ExportJobAccepted(
        job_id=job.id,
        status=job.status,
        status_url=str(request.url_for("get_export_job", job_id=job.id)),
    )


@router.get("/export-jobs/{job_id}", response_model=ExportJobStatusResponse)
async def get_export_job(
    job_id: str,
    request: Request,
    service: ExportServiceDep,
) -> ExportJobStatusResponse:
    """
    Get the status and progress of a background export.
    """
    download_url = str(request.url_for("download_export_job", job_id=job_id))
    return await service.get_status(job_id, download_url=download_url)


@router.get("/export-jobs/{job_id}/download")
async def download_export_job(
    job_id: str,
    service: ExportServiceDep,
) -> Response:
    """
    Download the archive of a completed background export.
    """
    try:
        filename, data = await service.get_download(job_id)
    except TransientInfraError as e:
        logger.error(f"Failed to read export for job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read export file") from e

    return Response(
        content=data,
        media_type="application/zip",
        headers=download_headers(filename),
    )
