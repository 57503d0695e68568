"""Pytest fixtures for testing."""
import asyncio
import os
from collections.abc import AsyncGenerator, Callable, Iterable
from datetime import UTC, datetime
from itertools import count
from typing import Any

# Must be set before any app imports that trigger Settings validation
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.session import create_session_factory
from models.base import Base
from schemas.bookmark import Bookmark, bookmark_from_row
from schemas.events import ChangeEvent, ChangeKind
from services.bookmark_backend import SqlBookmarkBackend
from services.change_channel import ChangeHandler, LocalChangeChannel, SubscriptionHandle
from services.exceptions import DuplicateUrlError
from services.sync_store import BookmarkSyncStore

OWNER_ID = "user-1"
OTHER_OWNER_ID = "user-2"
BASE_EPOCH = 1_700_000_000.0


class FakeClock:
    """Monotonic epoch clock advancing one second per call."""

    def __init__(self, start: float = BASE_EPOCH) -> None:
        self._ticks = count()
        self._start = start

    def __call__(self) -> float:
        return self._start + next(self._ticks)


class FakeBackend:
    """
    In-memory BookmarkBackend.

    Failures are injected by setting `*_error`; `delete_gate` / `insert_gate` hold
    a request in flight until set; `on_insert` runs before insert() returns, to
    simulate a change event that beats the response.
    """

    def __init__(self, rows: Iterable[Bookmark] = ()) -> None:
        self.rows: list[Bookmark] = list(rows)
        self.calls: list[tuple[Any, ...]] = []
        self.fetch_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.insert_gate: asyncio.Event | None = None
        self.delete_gate: asyncio.Event | None = None
        self.on_insert: Callable[[Bookmark], None] | None = None
        self._ids = count(100)
        self._clock = FakeClock(BASE_EPOCH + 10_000)

    async def fetch_active(self, owner_id: str) -> list[Bookmark]:
        self.calls.append(("fetch_active", owner_id))
        if self.fetch_error is not None:
            raise self.fetch_error
        active = [r for r in self.rows if r.owner_id == owner_id and not r.is_deleted]
        return sorted(active, key=lambda r: (r.created_at, r.id), reverse=True)

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
        self.calls.append(("insert", owner_id, url))
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.insert_error is not None:
            raise self.insert_error
        if any(r.owner_id == owner_id and r.url == url and not r.is_deleted for r in self.rows):
            raise DuplicateUrlError(url)
        bookmark = Bookmark(
            id=next(self._ids),
            owner_id=owner_id,
            url=url,
            title=title,
            description=description,
            favicon=favicon,
            tags=frozenset(tags),
            created_at=datetime.fromtimestamp(self._clock(), tz=UTC),
        )
        self.rows.append(bookmark)
        if self.on_insert is not None:
            self.on_insert(bookmark)
        return bookmark

    async def soft_delete(self, bookmark_id: int, owner_id: str) -> None:
        self.calls.append(("soft_delete", bookmark_id, owner_id))
        if self.delete_gate is not None:
            await self.delete_gate.wait()
        if self.delete_error is not None:
            raise self.delete_error
        self.rows = [
            r.model_copy(update={"is_deleted": True})
            if r.id == bookmark_id and r.owner_id == owner_id else r
            for r in self.rows
        ]

    async def ping(self) -> bool:
        return True

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeChannel:
    """In-memory ChangeChannel that records subscribe/unsubscribe calls."""

    def __init__(self) -> None:
        self.handlers: dict[str, tuple[str, ChangeHandler]] = {}
        self.subscribed: list[SubscriptionHandle] = []
        self.unsubscribed: list[SubscriptionHandle] = []
        self.subscribe_error: Exception | None = None

    async def subscribe(self, owner_id: str, handler: ChangeHandler) -> SubscriptionHandle:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        handle = SubscriptionHandle(owner_id=owner_id, channel=f"bookmarks:{owner_id}")
        self.handlers[handle.handle_id] = (owner_id, handler)
        self.subscribed.append(handle)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.unsubscribed.append(handle)
        self.handlers.pop(handle.handle_id, None)

    async def publish(self, owner_id: str, kind: ChangeKind, row: dict[str, Any]) -> bool:
        self.emit(ChangeEvent(kind=kind, row=bookmark_from_row(row)))
        return True

    def emit(self, event: ChangeEvent) -> None:
        """Deliver an event to every handler subscribed for the row's owner."""
        for owner_id, handler in list(self.handlers.values()):
            if owner_id == event.row.owner_id:
                handler(event)


def make_bookmark(
    bookmark_id: int,
    *,
    owner_id: str = OWNER_ID,
    offset: float | None = None,
    **overrides: Any,
) -> Bookmark:
    """Build a Bookmark whose created_at grows with its id unless `offset` is given."""
    seconds = BASE_EPOCH + (bookmark_id if offset is None else offset)
    values: dict[str, Any] = {
        "id": bookmark_id,
        "owner_id": owner_id,
        "url": f"https://example.com/{bookmark_id}",
        "title": f"Bookmark {bookmark_id}",
        "created_at": datetime.fromtimestamp(seconds, tz=UTC),
    }
    values.update(overrides)
    return Bookmark(**values)


def ids(bookmarks: Iterable[Bookmark]) -> list[int]:
    """Ids in list order."""
    return [b.id for b in bookmarks]


@pytest.fixture
def bookmark_factory() -> Callable[..., Bookmark]:
    """Factory for domain bookmarks."""
    return make_bookmark


@pytest.fixture
def id_list() -> Callable[[Iterable[Bookmark]], list[int]]:
    """Helper returning the ids of a list of bookmarks, in order."""
    return ids


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def fake_channel() -> FakeChannel:
    """In-memory change channel."""
    return FakeChannel()


@pytest.fixture
def store_factory(
    fake_backend: FakeBackend, fake_channel: FakeChannel,
) -> Callable[..., BookmarkSyncStore]:
    """Build (uninitialized) stores over the fake backend and channel."""

    def factory(**options: Any) -> BookmarkSyncStore:
        return BookmarkSyncStore(fake_backend, fake_channel, **options)

    return factory


@pytest.fixture
async def store(
    store_factory: Callable[..., BookmarkSyncStore],
) -> AsyncGenerator[BookmarkSyncStore]:
    """Store initialized for OWNER_ID over whatever rows the backend holds."""
    sync_store = store_factory()
    await sync_store.init(OWNER_ID)
    yield sync_store
    await sync_store.dispose()


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest.fixture
def local_channel() -> LocalChangeChannel:
    """In-process change channel."""
    return LocalChangeChannel()


@pytest.fixture
def sql_backend(
    session_factory: async_sessionmaker[AsyncSession],
    local_channel: LocalChangeChannel,
) -> SqlBookmarkBackend:
    """SQL backend announcing changes on the local channel."""
    return SqlBookmarkBackend(session_factory, local_channel, clock=FakeClock())


@pytest.fixture
async def client(
    fake_backend: FakeBackend,
    fake_channel: FakeChannel,
) -> AsyncGenerator[AsyncClient]:
    """Test client with a registry over the fake backend, authenticated as OWNER_ID."""
    from api.main import app
    from core.auth import get_current_user_id
    from services.session_registry import SessionRegistry

    registry = SessionRegistry.for_backend(fake_backend, fake_channel)
    app.state.registry = registry
    app.state.backend = fake_backend
    app.dependency_overrides[get_current_user_id] = lambda: OWNER_ID

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    await registry.close_all()
    app.dependency_overrides.clear()
    app.state.registry = None
    app.state.backend = None
