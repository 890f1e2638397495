"""Group flat verse rows into ordered book documents."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from itertools import groupby

from processing.usfm.documents import BookDocument, ChapterBlock, VerseText

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookRef:
    """A book associated with a project unit."""

    book_id: int
    book_code: str
    book_name: str


@dataclass(frozen=True)
class VerseRow:
    """A canonical verse joined with its translation, if any."""

    book_id: int
    chapter_number: int
    verse_number: int
    text: str | None = None


def _sort_key(row: VerseRow) -> tuple[int, int, int]:
    return (row.book_id, row.chapter_number, row.verse_number)


def build_chapters(rows: Iterable[VerseRow]) -> tuple[ChapterBlock, ...]:
    """
    Split verse rows of a single book into chapters.

    Rows must already be sorted; a new chapter starts whenever the chapter
    number changes. Duplicate verse numbers within a chapter keep the first
    row seen.
    """
    chapters: list[ChapterBlock] = []
    for chapter_number, chapter_rows in groupby(rows, key=lambda r: r.chapter_number):
        verses: list[VerseText] = []
        last_verse: int | None = None
        for row in chapter_rows:
            if row.verse_number == last_verse:
                continue
            verses.append(VerseText(verse_number=row.verse_number, text=row.text or ""))
            last_verse = row.verse_number
        chapters.append(ChapterBlock(chapter_number=chapter_number, verses=tuple(verses)))
    return tuple(chapters)


def build_book_documents(
    books: Sequence[BookRef],
    verse_rows: Iterable[VerseRow],
) -> list[BookDocument]:
    """
    Build one document per book that has at least one canonical verse.

    Args:
        books: Books to emit, in any order
        verse_rows: Canonical verses of those books, in any order

    Returns:
        Documents ordered by book id; books without verses are skipped
    """
    rows_by_book: dict[int, list[VerseRow]] = {}
    for book_id, rows in groupby(sorted(verse_rows, key=_sort_key), key=lambda r: r.book_id):
        rows_by_book[book_id] = list(rows)

    documents: list[BookDocument] = []
    for book in sorted(books, key=lambda b: b.book_id):
        rows = rows_by_book.get(book.book_id, [])
        if not rows:
            logger.warning(f"No verses found for book {book.book_code} (id={book.book_id}), skipping")
            continue
        documents.append(
            BookDocument(
                book_id=book.book_id,
                book_code=book.book_code,
                book_name=book.book_name,
                chapters=build_chapters(rows),
            )
        )
    return documents
