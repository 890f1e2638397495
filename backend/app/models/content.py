"""Translation content models.

These tables belong to the project management side of the system. The
export pipeline only reads them.
"""

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.models.base import Base


class Book(Base):
    """Canonical book (GEN, EXO, ...)."""

    __tablename__ = "books"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    eng_display_name: Mapped[str] = mapped_column(String(255), nullable=False)


class Bible(Base):
    """Source bible a project unit translates from."""

    __tablename__ = "bibles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    abbreviation: Mapped[str] = mapped_column(String(50), nullable=False)


class BibleText(Base):
    """One canonical verse of a source bible."""

    __tablename__ = "bible_texts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bible_id: Mapped[int] = mapped_column(ForeignKey("bibles.id"), nullable=False, index=True)
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    chapter_number: Mapped[int] = mapped_column(Integer, nullable=False)
    verse_number: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(String, nullable=False)


class Project(Base):
    """Translation project."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class ProjectUnit(Base):
    """Unit of work within a project; the unit of export."""

    __tablename__ = "project_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")


class ProjectUnitBibleBook(Base):
    """Association of a project unit with the bible books it covers."""

    __tablename__ = "project_unit_bible_books"

    project_unit_id: Mapped[int] = mapped_column(ForeignKey("project_units.id"), primary_key=True)
    bible_id: Mapped[int] = mapped_column(ForeignKey("bibles.id"), primary_key=True)
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), primary_key=True)


class TranslatedVerse(Base):
    """Translated text for one canonical verse within a project unit."""

    __tablename__ = "translated_verses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_unit_id: Mapped[int] = mapped_column(
        ForeignKey("project_units.id"), nullable=False, index=True
    )
    bible_text_id: Mapped[int] = mapped_column(ForeignKey("bible_texts.id"), nullable=False)
    content: Mapped[str] = mapped_column(String, nullable=False)
    assigned_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
