"""SQLAlchemy ORM models."""

from app.models.canon import Bible, Book, Chapter, Verse
from app.models.language_model import LanguageModel
from app.models.result import ComparisonResult
from app.models.run import Run, RunItem
from app.models.transform import TransformProfile

__all__ = [
    "Bible",
    "Book",
    "Chapter",
    "Verse",
    "LanguageModel",
    "ComparisonResult",
    "Run",
    "RunItem",
    "TransformProfile",
]
