"""
Tests for the SQL content source and the document assembler.
"""

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.core.exceptions import NotFoundError, TransientInfraError, ValidationError
from backend.app.db.retry import DbRetryConfig, with_db_retry
from backend.app.services.document_assembler import normalize_book_ids
from processing.usfm import render_usfm_text

# Seeded in conftest.py
PROJECT_UNIT_ID = 10
EMPTY_PROJECT_UNIT_ID = 20
MISSING_PROJECT_UNIT_ID = 99
PROJECT_NAME = 'Kitab: "Draft"/1'
GEN, EXO, MAT = 1, 2, 40


class TestSqlContentSource:
    """Reads against the seeded in-memory database."""

    async def test_book_associations_ordered_by_id(self, content):
        books = await content.get_book_associations(PROJECT_UNIT_ID)

        assert [(b.book_id, b.book_code) for b in books] == [(GEN, "GEN"), (EXO, "EXO"), (MAT, "MAT")]

    async def test_book_associations_filtered(self, content):
        books = await content.get_book_associations(PROJECT_UNIT_ID, [EXO, 999])

        assert [b.book_code for b in books] == ["EXO"]

    async def test_verse_rows_left_join_translations(self, content):
        rows = await content.get_verse_rows(PROJECT_UNIT_ID, [GEN, EXO])

        assert [(r.book_id, r.chapter_number, r.verse_number, r.text) for r in rows] == [
            (GEN, 1, 1, "Pada mulanya"),
            (GEN, 1, 2, None),
            (GEN, 2, 1, "Demikianlah"),
            (EXO, 1, 1, None),
        ]

    async def test_project_name(self, content):
        assert await content.get_project_name(PROJECT_UNIT_ID) == PROJECT_NAME
        assert await content.get_project_name(MISSING_PROJECT_UNIT_ID) is None

    async def test_available_books_counts(self, content):
        books = await content.get_available_books(PROJECT_UNIT_ID)

        assert [(b.book_code, b.verse_count, b.translated_count) for b in books] == [
            ("GEN", 3, 2),
            ("EXO", 1, 0),
        ]

    async def test_available_books_for_empty_unit(self, content):
        assert await content.get_available_books(EMPTY_PROJECT_UNIT_ID) == []


class TestDocumentAssembler:
    """Assembly and book id validation."""

    async def test_assemble_all_books(self, assembler):
        documents = await assembler.assemble(PROJECT_UNIT_ID)

        # MAT has no canonical verses and is skipped
        assert [d.book_code for d in documents] == ["GEN", "EXO"]
        assert render_usfm_text(documents[0]) == (
            "\\id GEN\n\\h Genesis\n\\mt Genesis\n"
            "\\c 1\n\\p\n\\v 1 Pada mulanya\n\\v 2 \n"
            "\\c 2\n\\p\n\\v 1 Demikianlah\n\n"
        )

    async def test_assemble_selected_books(self, assembler):
        documents = await assembler.assemble(PROJECT_UNIT_ID, [EXO])

        assert [d.book_code for d in documents] == ["EXO"]

    async def test_unknown_book_id_is_validation_error(self, assembler):
        with pytest.raises(ValidationError) as exc_info:
            await assembler.validate_book_ids(PROJECT_UNIT_ID, [GEN, 999])

        assert exc_info.value.details["invalid_book_ids"] == [999]

    async def test_empty_selection_is_not_validated(self, assembler):
        await assembler.validate_book_ids(EMPTY_PROJECT_UNIT_ID, None)
        await assembler.validate_book_ids(EMPTY_PROJECT_UNIT_ID, [])

    async def test_unit_without_books_is_not_found(self, assembler):
        with pytest.raises(NotFoundError, match="No books available for export"):
            await assembler.assemble(EMPTY_PROJECT_UNIT_ID)

    async def test_only_empty_books_selected(self, assembler):
        assert await assembler.assemble(PROJECT_UNIT_ID, [MAT]) == []

    def test_normalize_book_ids(self):
        assert normalize_book_ids(None) is None
        assert normalize_book_ids([]) is None
        assert normalize_book_ids([3, 1, 3]) == [1, 3]
        with pytest.raises(ValidationError):
            normalize_book_ids([1, 0])


class TestDbRetry:
    """Connection failures are retried, then surfaced as transient."""

    async def test_retries_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise OperationalError("SELECT 1", {}, Exception("connection reset"))
            return "ok"

        config = DbRetryConfig(max_attempts=3, base_delay=0, max_delay=0)
        assert await with_db_retry(flaky, config) == "ok"
        assert len(calls) == 2

    async def test_exhausted_attempts_raise_transient(self):
        async def down():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(TransientInfraError):
            await with_db_retry(down, DbRetryConfig(max_attempts=2, base_delay=0, max_delay=0))

    async def test_non_retryable_errors_propagate(self):
        async def broken():
            raise ValueError("bad query")

        with pytest.raises(ValueError):
            await with_db_retry(broken, DbRetryConfig(max_attempts=3, base_delay=0, max_delay=0))
