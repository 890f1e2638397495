"""USFM document model and renderer."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

USFM_ENTRY_SUFFIX = ".usfm"


@dataclass(frozen=True)
class VerseText:
    """One verse; text is empty when the verse has not been translated."""

    verse_number: int
    text: str = ""


@dataclass(frozen=True)
class ChapterBlock:
    """Verses of one chapter in ascending verse order."""

    chapter_number: int
    verses: tuple[VerseText, ...] = ()


@dataclass(frozen=True)
class BookDocument:
    """
    A complete book ready to be rendered as USFM.

    Chapters and verses are stored in reading order; the assembler is
    responsible for producing them sorted.
    """

    book_id: int
    book_code: str
    book_name: str
    chapters: tuple[ChapterBlock, ...] = field(default_factory=tuple)

    @property
    def entry_name(self) -> str:
        """Archive entry name for this book."""
        return f"{self.book_code}{USFM_ENTRY_SUFFIX}"

    @property
    def verse_count(self) -> int:
        return sum(len(chapter.verses) for chapter in self.chapters)


def render_usfm(document: BookDocument) -> Iterator[str]:
    """
    Yield the USFM text of a book chunk by chunk.

    Layout (the downstream consumer parses these markers literally):

        \\id GEN
        \\h Genesis
        \\mt Genesis
        \\c 1
        \\p
        \\v 1 In the beginning...
        <blank line>
    """
    yield f"\\id {document.book_code}\n"
    yield f"\\h {document.book_name}\n"
    yield f"\\mt {document.book_name}\n"

    for chapter in document.chapters:
        yield f"\\c {chapter.chapter_number}\n\\p\n"
        for verse in chapter.verses:
            yield f"\\v {verse.verse_number} {verse.text}\n"

    yield "\n"


def render_usfm_text(document: BookDocument) -> str:
    """Render a whole book as a single string."""
    return "".join(render_usfm(document))
