"""Persistence backend for bookmark rows."""
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.bookmark import BookmarkRow
from schemas.bookmark import Bookmark, bookmark_from_row, bookmark_insert_values
from schemas.events import ChangeKind
from services.change_channel import ChangeChannel
from services.exceptions import DuplicateUrlError, classify_database_error

logger = logging.getLogger(__name__)


class BookmarkBackend(Protocol):
    """Durable store for bookmark rows; the source of truth for a sync store."""

    async def fetch_active(self, owner_id: str) -> list[Bookmark]:
        """Return the owner's non-deleted bookmarks, newest first."""
        ...

    async def insert(
        self,
        owner_id: str,
        *,
        url: str,
        title: str,
        description: str | None = None,
        favicon: str | None = None,
        tags: Iterable[str] = (),
    ) -> Bookmark:
        """
        Insert a bookmark and return the stored row.

        Raises:
            DuplicateUrlError: If the owner already has an active bookmark for `url`.
            BookmarkStoreError: For any other classified failure.
        """
        ...

    async def soft_delete(self, bookmark_id: int, owner_id: str) -> None:
        """
        Mark the owner's bookmark as deleted.

        Raises:
            BookmarkStoreError: For any classified failure.
        """
        ...


async def _check_url_exists(
    db: AsyncSession,
    owner_id: str,
    url: str,
) -> BookmarkRow | None:
    """
    Check if a URL exists for this owner (excluding soft-deleted bookmarks).

    Returns the existing row if found, None otherwise.
    """
    result = await db.execute(
        select(BookmarkRow).where(
            BookmarkRow.user_id == owner_id,
            BookmarkRow.url == url,
            BookmarkRow.is_deleted.is_(False),
        ),
    )
    return result.scalars().first()


class SqlBookmarkBackend:
    """
    BookmarkBackend over the legacy bookmark table via async SQLAlchemy.

    Every write is committed before it is announced on the change channel, so
    subscribers never see an event for a row that was rolled back. Announcing is
    best effort: a failed publish is logged and the write still succeeds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: ChangeChannel | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._channel = channel
        self._clock = clock

    async def fetch_active(self, owner_id: str) -> list[Bookmark]:
        """Return the owner's non-deleted bookmarks ordered by created_at descending."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BookmarkRow)
                    .where(
                        BookmarkRow.user_id == owner_id,
                        BookmarkRow.is_deleted.is_(False),
                    )
                    .order_by(BookmarkRow.created_at.desc(), BookmarkRow.bookmark_id.desc()),
                )
                rows = [row.as_row() for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise classify_database_error(e, fallback_message="Failed to load bookmarks.") from e

        logger.debug("Fetched %d active bookmarks for owner %s", len(rows), owner_id)
        return [bookmark_from_row(row) for row in rows]

    async def insert(
        self,
        owner_id: str,
        *,
        url: str,
        title: str,
        description: str | None = None,
        favicon: str | None = None,
        tags: Iterable[str] = (),
    ) -> Bookmark:
        """
        Insert a new active bookmark.

        Checks for an existing active row with the same URL first; the partial
        unique index catches the race where two inserts pass that check together.
        """
        values = bookmark_insert_values(
            owner_id,
            url=url,
            title=title,
            description=description,
            favicon=favicon,
            tags=tags,
            now=self._clock(),
        )
        try:
            async with self._session_factory() as session, session.begin():
                if await _check_url_exists(session, owner_id, url) is not None:
                    raise DuplicateUrlError(url)
                row = BookmarkRow(**values)
                session.add(row)
                await session.flush()
                payload = row.as_row()
        except (SQLAlchemyError, OSError) as e:
            raise classify_database_error(e, url=url, fallback_message="Failed to add bookmark") from e

        logger.info("Inserted bookmark %s for owner %s", payload["bookmark_id"], owner_id)
        await self._announce(owner_id, ChangeKind.INSERT, payload)
        return bookmark_from_row(payload)

    async def soft_delete(self, bookmark_id: int, owner_id: str) -> None:
        """
        Set is_deleted on the owner's bookmark.

        Scoped to both id and owner. A missing or already deleted row is not an
        error, matching an UPDATE that matches no rows.
        """
        payload: dict[str, Any] | None = None
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    select(BookmarkRow).where(
                        BookmarkRow.bookmark_id == bookmark_id,
                        BookmarkRow.user_id == owner_id,
                    ),
                )
                row = result.scalar_one_or_none()
                if row is not None and not row.is_deleted:
                    row.is_deleted = True
                    row.updated_at = self._clock()
                    await session.flush()
                    payload = row.as_row()
        except (SQLAlchemyError, OSError) as e:
            raise classify_database_error(e, fallback_message="Failed to delete bookmark") from e

        if payload is None:
            logger.info("No active bookmark %s for owner %s to delete", bookmark_id, owner_id)
            return
        logger.info("Soft-deleted bookmark %s for owner %s", bookmark_id, owner_id)
        await self._announce(owner_id, ChangeKind.UPDATE, payload)

    async def ping(self) -> bool:
        """Check database connectivity."""
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError):
            logger.exception("Database health check failed")
            return False
        return True

    async def _announce(self, owner_id: str, kind: ChangeKind, payload: dict[str, Any]) -> None:
        if self._channel is None:
            return
        try:
            sent = await self._channel.publish(owner_id, kind, payload)
        except Exception:
            logger.exception("Failed to publish %s change for owner %s", kind, owner_id)
            return
        if not sent:
            logger.warning("Change channel unavailable; %s change for owner %s not published", kind, owner_id)
