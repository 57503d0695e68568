"""Per-session ownership of bookmark sync stores."""
import asyncio
import logging
from collections.abc import Callable

from services.bookmark_backend import BookmarkBackend
from services.change_channel import ChangeChannel
from services.sync_store import BookmarkSyncStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], BookmarkSyncStore]


class SessionRegistry:
    """
    Maps each active session owner to exactly one initialized BookmarkSyncStore.

    Concurrent first requests for the same owner await one pending open, so they
    never create two stores (and therefore never hold two subscriptions).
    Ending a session disposes its store, releasing the subscription.
    """

    def __init__(self, store_factory: StoreFactory) -> None:
        self._store_factory = store_factory
        self._stores: dict[str, BookmarkSyncStore] = {}
        self._pending: dict[str, asyncio.Task[BookmarkSyncStore]] = {}

    @classmethod
    def for_backend(
        cls,
        backend: BookmarkBackend,
        channel: ChangeChannel,
        *,
        error_display_seconds: float = 3.0,
        favicon_template: str | None = None,
        rollback_failed_deletes: bool = False,
    ) -> "SessionRegistry":
        """Build a registry whose stores share one backend and one channel."""
        options = {
            "error_display_seconds": error_display_seconds,
            "rollback_failed_deletes": rollback_failed_deletes,
        }
        if favicon_template is not None:
            options["favicon_template"] = favicon_template

        def factory() -> BookmarkSyncStore:
            return BookmarkSyncStore(backend, channel, **options)

        return cls(factory)

    def get(self, owner_id: str) -> BookmarkSyncStore | None:
        """Return the owner's store if a session is open."""
        return self._stores.get(owner_id)

    async def open(self, owner_id: str) -> BookmarkSyncStore:
        """
        Return the owner's store, creating and initializing it on first use.

        Concurrent first requests for the same owner share one pending open;
        other owners never wait on it.
        """
        store = self._stores.get(owner_id)
        if store is not None:
            return store
        pending = self._pending.get(owner_id)
        if pending is None or pending.done():
            pending = asyncio.create_task(self._open_store(owner_id), name=f"open-session:{owner_id}")
            self._pending[owner_id] = pending
            pending.add_done_callback(lambda task: self._forget_pending(owner_id, task))
        # A cancelled caller must not cancel the open other callers are waiting on
        return await asyncio.shield(pending)

    async def _open_store(self, owner_id: str) -> BookmarkSyncStore:
        store = self._store_factory()
        await store.init(owner_id)
        self._stores[owner_id] = store
        logger.info("Opened bookmark session for owner %s", owner_id)
        return store

    def _forget_pending(self, owner_id: str, task: asyncio.Task) -> None:
        if self._pending.get(owner_id) is task:
            del self._pending[owner_id]

    async def close(self, owner_id: str) -> bool:
        """End the owner's session. Returns False if none was open."""
        pending = self._pending.get(owner_id)
        if pending is not None:
            await asyncio.wait({pending})
        store = self._stores.pop(owner_id, None)
        if store is None:
            return False
        await store.dispose()
        logger.info("Closed bookmark session for owner %s", owner_id)
        return True

    async def close_all(self) -> None:
        """End every open session (application shutdown)."""
        owners = set(self._stores) | set(self._pending)
        for owner_id in owners:
            await self.close(owner_id)

    def __len__(self) -> int:
        return len(self._stores)
