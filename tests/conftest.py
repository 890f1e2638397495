"""
Pytest configuration and fixtures for the scripture export service tests.
"""

import os
import shutil
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing the app
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["DATA_ROOT"] = tempfile.mkdtemp(prefix="usfm_test_data_")
os.environ["LOG_LEVEL"] = "WARNING"

from backend.app.config import Settings
from backend.app.container import ExportServices
from backend.app.db.retry import DbRetryConfig
from backend.app.db.session import Database
from backend.app.main import create_app
from backend.app.models import (
    Base,
    Bible,
    BibleText,
    Book,
    Project,
    ProjectUnit,
    ProjectUnitBibleBook,
    TranslatedVerse,
)
from backend.app.queue import MemoryJobQueue, RetryPolicy
from backend.app.services.artifact_store import ArtifactStore
from backend.app.services.content_service import SqlContentSource
from backend.app.services.document_assembler import DocumentAssembler
from processing.export import ArchiveStreamer
from worker.export_worker import ExportWorker

# Seeded content
PROJECT_UNIT_ID = 10
EMPTY_PROJECT_UNIT_ID = 20
MISSING_PROJECT_UNIT_ID = 99
PROJECT_NAME = 'Kitab: "Draft"/1'
GEN, EXO, MAT = 1, 2, 40


class FakeClock:
    """Controllable clock shared by the queue (datetimes) and the store (epoch seconds)."""

    def __init__(self) -> None:
        self._now = datetime.fromtimestamp(int(time.time()), tz=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def time(self) -> float:
        return self._now.timestamp()

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@pytest.fixture(scope="session", autouse=True)
def test_data_root():
    """Remove the data root created for the app settings after all tests."""
    data_root = os.environ["DATA_ROOT"]
    yield Path(data_root)
    shutil.rmtree(data_root, ignore_errors=True)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        app_env="testing",
        database_url="sqlite+aiosqlite:///:memory:",
        queue_backend="memory",
        queue_retry_limit=0,
        queue_retry_delay=10,
        data_root=tmp_path,
        export_directory=tmp_path / "exports",
        worker_shutdown_grace_period=1.0,
        worker_shutdown_poll_interval=0.05,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


async def seed_content(database: Database) -> None:
    """
    Two project units of a small bible.

    Unit 10 covers GEN (two chapters, partly translated), EXO (untranslated)
    and MAT (no canonical verses). Unit 20 covers no books at all.
    """
    async with database.session() as session:
        session.add_all(
            [
                Project(id=1, name=PROJECT_NAME),
                Project(id=2, name="Empty Project"),
                Bible(id=1, name="Test Bible", abbreviation="TB"),
                Book(id=GEN, code="GEN", eng_display_name="Genesis"),
                Book(id=EXO, code="EXO", eng_display_name="Exodus"),
                Book(id=MAT, code="MAT", eng_display_name="Matthew"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                ProjectUnit(id=PROJECT_UNIT_ID, project_id=1, status="in_progress"),
                ProjectUnit(id=EMPTY_PROJECT_UNIT_ID, project_id=2, status="not_started"),
                BibleText(id=1, bible_id=1, book_id=GEN, chapter_number=1, verse_number=1, text="In the beginning"),
                BibleText(id=2, bible_id=1, book_id=GEN, chapter_number=1, verse_number=2, text="And the earth"),
                BibleText(id=3, bible_id=1, book_id=GEN, chapter_number=2, verse_number=1, text="Thus the heavens"),
                BibleText(id=4, bible_id=1, book_id=EXO, chapter_number=1, verse_number=1, text="Now these are"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                ProjectUnitBibleBook(project_unit_id=PROJECT_UNIT_ID, bible_id=1, book_id=GEN),
                ProjectUnitBibleBook(project_unit_id=PROJECT_UNIT_ID, bible_id=1, book_id=EXO),
                ProjectUnitBibleBook(project_unit_id=PROJECT_UNIT_ID, bible_id=1, book_id=MAT),
                TranslatedVerse(id=1, project_unit_id=PROJECT_UNIT_ID, bible_text_id=1, content="Pada mulanya"),
                TranslatedVerse(id=2, project_unit_id=PROJECT_UNIT_ID, bible_text_id=3, content="Demikianlah"),
            ]
        )


@pytest.fixture
async def database(settings):
    """In-memory SQLite database with the schema created and content seeded."""
    db = Database(settings)
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await seed_content(db)
    yield db
    await db.close()


@pytest.fixture
def content(database) -> SqlContentSource:
    return SqlContentSource(database, DbRetryConfig(max_attempts=1))


@pytest.fixture
def assembler(content) -> DocumentAssembler:
    return DocumentAssembler(content)


@pytest.fixture
def store(settings, clock) -> ArtifactStore:
    return ArtifactStore(settings.export_directory, ttl_seconds=3600, clock=clock.time)


@pytest.fixture
def queue(clock) -> MemoryJobQueue:
    policy = RetryPolicy(retry_limit=0, retry_delay=10, expire_in_seconds=60, retention_seconds=600)
    return MemoryJobQueue(policy, clock=clock.now)


@pytest.fixture
def streamer() -> ArchiveStreamer:
    return ArchiveStreamer()


@pytest.fixture
def services(settings, database, queue, store, content, assembler, streamer) -> ExportServices:
    return ExportServices(
        settings=settings,
        database=database,
        queue=queue,
        store=store,
        content=content,
        assembler=assembler,
        streamer=streamer,
    )


@pytest.fixture
def worker(services) -> ExportWorker:
    return ExportWorker(
        queue=services.queue,
        assembler=services.assembler,
        content=services.content,
        streamer=services.streamer,
        store=services.store,
    )


@pytest.fixture
async def client(settings, services):
    """HTTP client for the app, wired to the test services."""
    app = create_app(settings)
    # ASGITransport does not run the lifespan; install the services directly
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
