"""USFM document assembly and rendering."""

from processing.usfm.builder import BookRef, VerseRow, build_book_documents
from processing.usfm.documents import (
    BookDocument,
    ChapterBlock,
    VerseText,
    render_usfm,
    render_usfm_text,
)

__all__ = [
    "BookDocument",
    "BookRef",
    "ChapterBlock",
    "VerseRow",
    "VerseText",
    "build_book_documents",
    "render_usfm",
    "render_usfm_text",
]
