"""Bookmark row model for the legacy bookmark table."""
from typing import Any

from sqlalchemy import Boolean, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, EpochTimestampMixin

# Literal stored by the legacy schema when a text column has no value
PLACEHOLDER = "NA"


class BookmarkRow(Base, EpochTimestampMixin):
    """
    Bookmark row - stores URLs with metadata and tags.

    Optional text columns hold the "NA" placeholder instead of NULL, and tags are
    a single comma-joined string. Conversion to the domain Bookmark happens in
    schemas.bookmark.bookmark_from_row and nowhere else.
    """

    __tablename__ = "sbookmarktbl"
    __table_args__ = (
        # Partial unique index: soft-deleted bookmarks don't count toward URL uniqueness
        Index(
            "uq_sbookmark_user_url_active",
            "user_id",
            "url",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_sbookmark_user_active_created", "user_id", "is_deleted", "created_at"),
    )

    bookmark_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default=PLACEHOLDER)
    description: Mapped[str] = mapped_column(Text, nullable=False, default=PLACEHOLDER)
    favicon_url: Mapped[str] = mapped_column(Text, nullable=False, default=PLACEHOLDER)
    is_favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    folder_name: Mapped[str] = mapped_column(String(255), nullable=False, default="General")
    tags: Mapped[str] = mapped_column(Text, nullable=False, default=PLACEHOLDER)
    visibility: Mapped[str] = mapped_column(String(32), nullable=False, default="private")

    def as_row(self) -> dict[str, Any]:
        """Return the column values keyed by column name (the change event payload)."""
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}
