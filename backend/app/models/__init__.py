"""SQLAlchemy ORM models."""

from backend.app.models.base import Base
from backend.app.models.content import (
    Bible,
    BibleText,
    Book,
    Project,
    ProjectUnit,
    ProjectUnitBibleBook,
    TranslatedVerse,
)
from backend.app.models.export import ExportJobRecord

__all__ = [
    "Base",
    "Bible",
    "BibleText",
    "Book",
    "Project",
    "ProjectUnit",
    "ProjectUnitBibleBook",
    "TranslatedVerse",
    "ExportJobRecord",
]
