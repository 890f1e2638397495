"""Service wiring shared by the API process and the worker process."""

import logging
from dataclasses import dataclass

from backend.app.config import Settings
from backend.app.db.retry import DbRetryConfig
from backend.app.db.session import Database
from backend.app.queue import JobQueue, create_job_queue
from backend.app.services.artifact_store import ArtifactStore
from backend.app.services.content_service import SqlContentSource
from backend.app.services.document_assembler import ContentSource, DocumentAssembler
from processing.export import ArchiveConfig, ArchiveStreamer

logger = logging.getLogger(__name__)


@dataclass
class ExportServices:
    """Long-lived collaborators built once per process from the settings."""

    settings: Settings
    database: Database
    queue: JobQueue
    store: ArtifactStore
    content: ContentSource
    assembler: DocumentAssembler
    streamer: ArchiveStreamer

    async def close(self) -> None:
        await self.queue.close()
        await self.database.close()


def build_services(settings: Settings) -> ExportServices:
    """Construct every export collaborator from one immutable settings value."""
    database = Database(settings)
    content = SqlContentSource(database, DbRetryConfig.from_settings(settings))
    services = ExportServices(
        settings=settings,
        database=database,
        queue=create_job_queue(settings, database),
        store=ArtifactStore.from_settings(settings),
        content=content,
        assembler=DocumentAssembler(content),
        streamer=ArchiveStreamer(ArchiveConfig(compress_level=settings.export_compression_level)),
    )
    logger.info(f"Export services ready: exports in {settings.export_directory}")
    return services
