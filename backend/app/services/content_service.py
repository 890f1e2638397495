"""SQL-backed content source for exports."""

import logging
from collections.abc import Sequence

from sqlalchemy import Select, and_, func, select

from backend.app.constants import VERSE_QUERY_BATCH_SIZE
from backend.app.db.retry import DbRetryConfig, with_db_retry
from backend.app.db.session import Database
from backend.app.models.content import (
    BibleText,
    Book,
    Project,
    ProjectUnit,
    ProjectUnitBibleBook,
    TranslatedVerse,
)
from backend.app.schemas.export import ExportableBook
from processing.usfm import BookRef, VerseRow

logger = logging.getLogger(__name__)


class SqlContentSource:
    """Reads books, canonical verses and translations from the relational store."""

    def __init__(self, database: Database, retry: DbRetryConfig | None = None):
        self.database = database
        self.retry = retry or DbRetryConfig()

    async def _fetch_all(self, stmt: Select, description: str) -> list:
        async def _run() -> list:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return list(result.all())

        return await with_db_retry(_run, self.retry, description)

    async def get_book_associations(
        self, project_unit_id: int, book_ids: Sequence[int] | None = None
    ) -> list[BookRef]:
        stmt = (
            select(ProjectUnitBibleBook.book_id, Book.code, Book.eng_display_name)
            .join(Book, ProjectUnitBibleBook.book_id == Book.id)
            .where(ProjectUnitBibleBook.project_unit_id == project_unit_id)
            .distinct()
            .order_by(ProjectUnitBibleBook.book_id)
        )
        if book_ids:
            stmt = stmt.where(ProjectUnitBibleBook.book_id.in_(list(book_ids)))

        rows = await self._fetch_all(stmt, "load project books")
        return [BookRef(book_id=row[0], book_code=row[1], book_name=row[2]) for row in rows]

    async def get_verse_rows(self, project_unit_id: int, book_ids: Sequence[int]) -> list[VerseRow]:
        """Load verses book batch by book batch, each batch in canonical order."""
        verses: list[VerseRow] = []
        ids = list(book_ids)

        for start in range(0, len(ids), VERSE_QUERY_BATCH_SIZE):
            batch = ids[start : start + VERSE_QUERY_BATCH_SIZE]
            stmt = (
                select(
                    BibleText.book_id,
                    BibleText.chapter_number,
                    BibleText.verse_number,
                    TranslatedVerse.content,
                )
                .join(
                    ProjectUnitBibleBook,
                    and_(
                        ProjectUnitBibleBook.book_id == BibleText.book_id,
                        ProjectUnitBibleBook.bible_id == BibleText.bible_id,
                        ProjectUnitBibleBook.project_unit_id == project_unit_id,
                    ),
                )
                .outerjoin(
                    TranslatedVerse,
                    and_(
                        TranslatedVerse.bible_text_id == BibleText.id,
                        TranslatedVerse.project_unit_id == project_unit_id,
                    ),
                )
                .where(BibleText.book_id.in_(batch))
                .order_by(
                    BibleText.book_id,
                    BibleText.chapter_number,
                    BibleText.verse_number,
                    TranslatedVerse.id,
                )
            )
            rows = await self._fetch_all(stmt, "load verses")
            verses.extend(
                VerseRow(book_id=row[0], chapter_number=row[1], verse_number=row[2], text=row[3])
                for row in rows
            )

        logger.debug(f"Loaded {len(verses)} verses for project unit {project_unit_id}")
        return verses

    async def get_project_name(self, project_unit_id: int) -> str | None:
        stmt = (
            select(Project.name)
            .join(ProjectUnit, Project.id == ProjectUnit.project_id)
            .where(ProjectUnit.id == project_unit_id)
            .limit(1)
        )
        rows = await self._fetch_all(stmt, "load project name")
        return rows[0][0] if rows else None

    async def get_available_books(self, project_unit_id: int) -> list[ExportableBook]:
        """Books with their canonical verse count and translated verse count."""
        stmt = (
            select(
                ProjectUnitBibleBook.book_id,
                Book.code,
                Book.eng_display_name,
                func.count(BibleText.id).label("verse_count"),
                func.count(TranslatedVerse.id).label("translated_count"),
            )
            .join(Book, ProjectUnitBibleBook.book_id == Book.id)
            .join(
                BibleText,
                and_(
                    BibleText.bible_id == ProjectUnitBibleBook.bible_id,
                    BibleText.book_id == ProjectUnitBibleBook.book_id,
                ),
            )
            .outerjoin(
                TranslatedVerse,
                and_(
                    TranslatedVerse.bible_text_id == BibleText.id,
                    TranslatedVerse.project_unit_id == project_unit_id,
                ),
            )
            .where(ProjectUnitBibleBook.project_unit_id == project_unit_id)
            .group_by(ProjectUnitBibleBook.book_id, Book.code, Book.eng_display_name)
            .order_by(ProjectUnitBibleBook.book_id)
        )
        rows = await self._fetch_all(stmt, "load exportable books")
        return [
            ExportableBook(
                book_id=row[0],
                book_code=row[1],
                book_name=row[2],
                verse_count=row[3],
                translated_count=row[4],
            )
            for row in rows
        ]
