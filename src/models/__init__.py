"""SQLAlchemy models."""
from models.base import Base, EpochTimestampMixin
from models.bookmark import PLACEHOLDER, BookmarkRow

__all__ = ["PLACEHOLDER", "Base", "BookmarkRow", "EpochTimestampMixin"]
