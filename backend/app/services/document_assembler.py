"""Document assembly: project unit content to ordered USFM book documents."""

import logging
from collections.abc import Sequence
from typing import Protocol

from backend.app.core.exceptions import NotFoundError, ValidationError
from backend.app.schemas.export import ExportableBook
from processing.usfm import BookDocument, BookRef, VerseRow, build_book_documents

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    """Read-only view of translation content."""

    async def get_book_associations(
        self, project_unit_id: int, book_ids: Sequence[int] | None = None
    ) -> list[BookRef]:
        """Distinct books of the project unit, optionally restricted to book_ids."""
        ...

    async def get_verse_rows(self, project_unit_id: int, book_ids: Sequence[int]) -> list[VerseRow]:
        """Canonical verses of the given books left-joined with their translations."""
        ...

    async def get_project_name(self, project_unit_id: int) -> str | None:
        ...

    async def get_available_books(self, project_unit_id: int) -> list[ExportableBook]:
        ...


def normalize_book_ids(book_ids: Sequence[int] | None) -> list[int] | None:
    """Deduplicate and sort requested ids; an empty selection means all books."""
    if not book_ids:
        return None
    invalid = [book_id for book_id in book_ids if book_id <= 0]
    if invalid:
        raise ValidationError("Book ids must be positive integers", details={"invalid_book_ids": invalid})
    return sorted(set(book_ids))


class DocumentAssembler:
    """Builds the per-book documents of a project unit."""

    def __init__(self, content: ContentSource):
        self.content = content

    async def resolve_books(
        self, project_unit_id: int, book_ids: Sequence[int] | None = None
    ) -> list[BookRef]:
        """
        Resolve which books an export covers.

        Raises:
            ValidationError: A requested book is not associated with the project unit
            NotFoundError: The project unit has no books to export
        """
        requested = normalize_book_ids(book_ids)
        books = await self.content.get_book_associations(project_unit_id, requested)

        if requested:
            found = {book.book_id for book in books}
            missing = [book_id for book_id in requested if book_id not in found]
            if missing:
                raise ValidationError(
                    f"Invalid book ids for project unit {project_unit_id}: {missing}",
                    details={"project_unit_id": project_unit_id, "invalid_book_ids": missing},
                )

        if not books:
            raise NotFoundError(
                "No books available for export",
                details={"project_unit_id": project_unit_id},
            )
        return books

    async def validate_book_ids(self, project_unit_id: int, book_ids: Sequence[int] | None) -> None:
        """
        Check explicitly requested ids before anything is streamed or enqueued.

        An empty selection is not checked here; whether the project unit has
        any books at all is decided when the export runs.
        """
        requested = normalize_book_ids(book_ids)
        if requested:
            await self.resolve_books(project_unit_id, requested)

    async def assemble(
        self, project_unit_id: int, book_ids: Sequence[int] | None = None
    ) -> list[BookDocument]:
        """Return one document per resolved book, ordered by book id."""
        books = await self.resolve_books(project_unit_id, book_ids)
        rows = await self.content.get_verse_rows(project_unit_id, [book.book_id for book in books])
        documents = build_book_documents(books, rows)
        logger.info(
            f"Assembled {len(documents)}/{len(books)} books for project unit {project_unit_id} "
            f"({sum(d.verse_count for d in documents)} verses)"
        )
        return documents
