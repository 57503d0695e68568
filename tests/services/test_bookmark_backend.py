"""
Tests for the SQL bookmark backend.

Runs against in-memory SQLite. Covers placeholder storage, owner scoping,
duplicate URL detection, error classification, and change announcements.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.session import create_session_factory
from models.bookmark import PLACEHOLDER, BookmarkRow
from schemas.events import ChangeEvent, ChangeKind
from services.bookmark_backend import SqlBookmarkBackend
from services.change_channel import LocalChangeChannel
from services.exceptions import DuplicateUrlError, SchemaError, TransientBackendError
from services.sync_store import BookmarkSyncStore
from tests.conftest import OTHER_OWNER_ID, OWNER_ID, ids


async def _stored_row(
    session_factory: async_sessionmaker[AsyncSession], bookmark_id: int,
) -> BookmarkRow:
    async with session_factory() as session:
        result = await session.execute(
            select(BookmarkRow).where(BookmarkRow.bookmark_id == bookmark_id),
        )
        return result.scalar_one()


# =============================================================================
# Insert
# =============================================================================


async def test__insert__returns_domain_bookmark(sql_backend: SqlBookmarkBackend) -> None:
    bookmark = await sql_backend.insert(
        OWNER_ID,
        url="https://example.com",
        title="Example",
        tags={"python", "web"},
    )

    assert bookmark.owner_id == OWNER_ID
    assert bookmark.url == "https://example.com"
    assert bookmark.title == "Example"
    assert bookmark.description is None
    assert bookmark.favicon is None
    assert bookmark.tags == frozenset({"python", "web"})
    assert bookmark.is_deleted is False
    assert bookmark.created_at.tzinfo is not None


async def test__insert__stores_placeholders_for_absent_values(
    sql_backend: SqlBookmarkBackend,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    bookmark = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Example")

    row = await _stored_row(session_factory, bookmark.id)
    assert row.description == PLACEHOLDER
    assert row.favicon_url == PLACEHOLDER
    assert row.tags == PLACEHOLDER
    assert row.folder_name == "General"
    assert row.visibility == "private"
    assert row.click_count == 0
    assert row.is_deleted is False
    assert row.created_at == row.updated_at


async def test__insert__stores_tags_comma_joined(
    sql_backend: SqlBookmarkBackend,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    bookmark = await sql_backend.insert(
        OWNER_ID, url="https://example.com", title="Example", tags=["web", "python"],
    )

    row = await _stored_row(session_factory, bookmark.id)
    assert row.tags == "python, web"


async def test__insert__duplicate_url_raises(sql_backend: SqlBookmarkBackend) -> None:
    await sql_backend.insert(OWNER_ID, url="https://example.com", title="First")

    with pytest.raises(DuplicateUrlError) as exc_info:
        await sql_backend.insert(OWNER_ID, url="https://example.com", title="Second")

    assert exc_info.value.url == "https://example.com"


async def test__insert__same_url_allowed_for_other_owner(sql_backend: SqlBookmarkBackend) -> None:
    await sql_backend.insert(OWNER_ID, url="https://example.com", title="Mine")

    other = await sql_backend.insert(OTHER_OWNER_ID, url="https://example.com", title="Theirs")

    assert other.owner_id == OTHER_OWNER_ID


async def test__insert__url_reusable_after_soft_delete(sql_backend: SqlBookmarkBackend) -> None:
    first = await sql_backend.insert(OWNER_ID, url="https://example.com", title="First")
    await sql_backend.soft_delete(first.id, OWNER_ID)

    second = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Again")

    assert second.id != first.id


async def test__insert__unique_index_race_maps_to_duplicate(
    sql_backend: SqlBookmarkBackend,
) -> None:
    """If the pre-check misses a concurrent insert, the partial unique index catches it."""
    await sql_backend.insert(OWNER_ID, url="https://example.com", title="First")

    with patch(
        "services.bookmark_backend._check_url_exists",
        new_callable=AsyncMock,
        return_value=None,
    ), pytest.raises(DuplicateUrlError):
        await sql_backend.insert(OWNER_ID, url="https://example.com", title="Second")


async def test__insert__announces_insert_event(
    sql_backend: SqlBookmarkBackend,
    local_channel: LocalChangeChannel,
) -> None:
    events: list[ChangeEvent] = []
    await local_channel.subscribe(OWNER_ID, events.append)

    bookmark = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Example")

    assert [(e.kind, e.row) for e in events] == [(ChangeKind.INSERT, bookmark)]


async def test__insert__publish_failure_does_not_fail_write(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    channel = AsyncMock()
    channel.publish.side_effect = RuntimeError("publish failed")
    backend = SqlBookmarkBackend(session_factory, channel)

    bookmark = await backend.insert(OWNER_ID, url="https://example.com", title="Example")

    assert [b.id for b in await backend.fetch_active(OWNER_ID)] == [bookmark.id]


# =============================================================================
# Fetch
# =============================================================================


async def test__fetch_active__newest_first_active_only_owner_scoped(
    sql_backend: SqlBookmarkBackend,
) -> None:
    first = await sql_backend.insert(OWNER_ID, url="https://a.com", title="A")
    second = await sql_backend.insert(OWNER_ID, url="https://b.com", title="B")
    deleted = await sql_backend.insert(OWNER_ID, url="https://c.com", title="C")
    await sql_backend.insert(OTHER_OWNER_ID, url="https://d.com", title="D")
    await sql_backend.soft_delete(deleted.id, OWNER_ID)

    result = await sql_backend.fetch_active(OWNER_ID)

    assert ids(result) == [second.id, first.id]


async def test__fetch_active__missing_table_is_schema_error() -> None:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    backend = SqlBookmarkBackend(create_session_factory(engine))

    try:
        with pytest.raises(SchemaError):
            await backend.fetch_active(OWNER_ID)
    finally:
        await engine.dispose()


async def test__fetch_active__other_database_errors_are_transient() -> None:
    failing_factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("timeout")))
    backend = SqlBookmarkBackend(failing_factory)

    with pytest.raises(TransientBackendError) as exc_info:
        await backend.fetch_active(OWNER_ID)

    assert exc_info.value.message == "Failed to load bookmarks."


# =============================================================================
# Soft delete
# =============================================================================


async def test__soft_delete__sets_flag_and_keeps_row(
    sql_backend: SqlBookmarkBackend,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    bookmark = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Example")

    await sql_backend.soft_delete(bookmark.id, OWNER_ID)

    row = await _stored_row(session_factory, bookmark.id)
    assert row.is_deleted is True
    assert row.updated_at > row.created_at


async def test__soft_delete__scoped_to_owner(
    sql_backend: SqlBookmarkBackend,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    bookmark = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Example")

    await sql_backend.soft_delete(bookmark.id, OTHER_OWNER_ID)

    row = await _stored_row(session_factory, bookmark.id)
    assert row.is_deleted is False


async def test__soft_delete__announces_update_event(
    sql_backend: SqlBookmarkBackend,
    local_channel: LocalChangeChannel,
) -> None:
    bookmark = await sql_backend.insert(OWNER_ID, url="https://example.com", title="Example")
    events: list[ChangeEvent] = []
    await local_channel.subscribe(OWNER_ID, events.append)

    await sql_backend.soft_delete(bookmark.id, OWNER_ID)
    # Second delete changes nothing and announces nothing
    await sql_backend.soft_delete(bookmark.id, OWNER_ID)

    assert len(events) == 1
    assert events[0].kind == ChangeKind.UPDATE
    assert events[0].row.id == bookmark.id
    assert events[0].row.is_deleted is True


# =============================================================================
# Store over the SQL backend
# =============================================================================


async def test__store__add_with_synchronous_event_lists_once(
    sql_backend: SqlBookmarkBackend,
    local_channel: LocalChangeChannel,
) -> None:
    """The insert event is delivered before insert() returns; still one entry."""
    store = BookmarkSyncStore(sql_backend, local_channel)
    await store.init(OWNER_ID)

    added = await store.add({"url": "https://a.com", "title": "A"})

    assert added is not None
    assert ids(store.bookmarks) == [added.id]
    await store.dispose()


async def test__store__remove_in_one_session_reaches_the_other(
    sql_backend: SqlBookmarkBackend,
    local_channel: LocalChangeChannel,
) -> None:
    existing = await sql_backend.insert(OWNER_ID, url="https://a.com", title="A")
    laptop = BookmarkSyncStore(sql_backend, local_channel)
    phone = BookmarkSyncStore(sql_backend, local_channel)
    await laptop.init(OWNER_ID)
    await phone.init(OWNER_ID)

    assert await laptop.remove(existing.id) is True
    added = await phone.add({"url": "https://b.com", "title": "B"})

    assert added is not None
    assert ids(laptop.bookmarks) == [added.id]
    assert ids(phone.bookmarks) == [added.id]

    await laptop.dispose()
    await phone.dispose()
    assert local_channel.subscriber_count(OWNER_ID) == 0
