"""
Bookmark synchronization store.

Owns one user session's visible list of active bookmarks and keeps it consistent
under three input sources: the initial bulk load, the user's own add/remove
requests (applied optimistically), and change events pushed by the change
channel. Local requests and events may describe the same row and arrive in any
order; the reconciliation rules in services.reconcile make that safe.

All list mutations go through BookmarkSyncStore._apply, which runs synchronously
on the event loop, so no two mutations ever interleave.
"""
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from schemas.bookmark import Bookmark, BookmarkCreate, validation_error_from_pydantic
from schemas.events import ChangeEvent
from services.bookmark_backend import BookmarkBackend
from services.change_channel import ChangeChannel, SubscriptionHandle
from services.exceptions import (
    BookmarkStoreError,
    InvalidStateError,
    SubscriptionError,
    TransientBackendError,
)
from services.reconcile import (
    apply_change,
    index_of,
    insert_ordered,
    prepend_if_absent,
    remove_by_id,
    sort_newest_first,
)
from services.status_signal import StatusSignal
from services.utils import DEFAULT_FAVICON_TEMPLATE, favicon_url

logger = logging.getLogger(__name__)

ListListener = Callable[[tuple[Bookmark, ...]], None]


class BookmarkSyncStore:
    """
    Visible bookmark list for a single session.

    Lifecycle: construct, `await init(owner_id)` once, use, `await dispose()`.
    A store is never reused for another session.

    Failures from the backend never raise out of add()/remove(); they are
    classified and reported on `status`. Calling add()/remove() before init()
    has completed or after dispose() raises InvalidStateError.
    """

    def __init__(
        self,
        backend: BookmarkBackend,
        channel: ChangeChannel,
        *,
        error_display_seconds: float = 3.0,
        favicon_template: str = DEFAULT_FAVICON_TEMPLATE,
        rollback_failed_deletes: bool = False,
    ) -> None:
        self._backend = backend
        self._channel = channel
        self._favicon_template = favicon_template
        self._rollback_failed_deletes = rollback_failed_deletes
        self._owner_id: str | None = None
        self._items: list[Bookmark] = []
        self._subscription: SubscriptionHandle | None = None
        self._ready = False
        self._disposed = False
        self._listeners: list[ListListener] = []
        self.status = StatusSignal(error_display_seconds)

    @property
    def bookmarks(self) -> tuple[Bookmark, ...]:
        """Read-only snapshot of the visible list, newest first."""
        return tuple(self._items)

    @property
    def owner_id(self) -> str | None:
        """Identity of the session owner, once init() has started."""
        return self._owner_id

    @property
    def is_active(self) -> bool:
        """True between a completed init() and dispose()."""
        return self._ready and not self._disposed

    @property
    def is_live(self) -> bool:
        """True while the change subscription is held and still delivering."""
        return self._subscription is not None and self._subscription.is_open

    def on_change(self, listener: ListListener) -> Callable[[], None]:
        """
        Call `listener` with a new snapshot whenever the visible list changes.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def init(self, owner_id: str) -> None:
        """
        Load the owner's bookmarks and subscribe to their change events.

        A failed load leaves the list empty and reports the error; it is not
        retried. A failed subscription is logged and the store keeps working
        without live updates. Returns once the subscription attempt has finished.
        """
        if self._owner_id is not None or self._disposed:
            raise InvalidStateError("Bookmark store can only be initialized once")
        self._owner_id = owner_id

        try:
            rows = await self._backend.fetch_active(owner_id)
        except Exception as e:
            if self._is_current():
                self._apply(lambda _items: [])
                self.status.report(self._classify(e, "Failed to load bookmarks."))
        else:
            if self._is_current():
                initial = self._initial_list(rows)
                self._apply(lambda _items: initial)
                logger.info("Loaded %d bookmarks for owner %s", len(initial), owner_id)

        await self._subscribe(owner_id)
        if self._is_current():
            self._ready = True

    async def add(self, data: BookmarkCreate | Mapping[str, Any]) -> Bookmark | None:
        """
        Validate and insert a bookmark, then show it at the front of the list.

        The row may already be present if its insert event arrived first; it is
        never listed twice. Returns the stored bookmark, or None on failure.
        """
        owner_id = self._require_active()
        try:
            payload = (
                data if isinstance(data, BookmarkCreate)
                else BookmarkCreate.model_validate(dict(data))
            )
        except ValidationError as e:
            self.status.report(validation_error_from_pydantic(e))
            return None

        try:
            bookmark = await self._backend.insert(
                owner_id,
                url=payload.url,
                title=payload.title,
                description=payload.description,
                favicon=payload.favicon or favicon_url(payload.url, self._favicon_template),
                tags=payload.tags,
            )
        except Exception as e:
            if self._is_current():
                self.status.report(self._classify(e, "Failed to add bookmark"))
            return None

        if not self._is_current():
            logger.debug("Discarding insert result for bookmark %s after dispose", bookmark.id)
            return None
        self._apply(lambda items: prepend_if_absent(items, bookmark))
        return bookmark

    async def remove(self, bookmark_id: int) -> bool:
        """
        Hide a bookmark immediately, then soft-delete it in the backend.

        If the backend delete fails the error is reported and, unless
        rollback_failed_deletes is set, the bookmark stays hidden. Returns True
        if the backend confirmed the delete.
        """
        owner_id = self._require_active()
        index = index_of(self._items, bookmark_id)
        removed = self._items[index] if index is not None else None
        self._apply(lambda items: remove_by_id(items, bookmark_id))

        try:
            await self._backend.soft_delete(bookmark_id, owner_id)
        except Exception as e:
            if not self._is_current():
                return False
            self.status.report(self._classify(e, "Failed to delete bookmark"))
            if self._rollback_failed_deletes and removed is not None:
                self._apply(lambda items: insert_ordered(items, removed))
            return False
        return True

    def handle_event(self, event: ChangeEvent) -> None:
        """Merge a change event from the channel into the visible list."""
        if not self._is_current() or self._owner_id is None:
            logger.debug("Dropping %s event for bookmark %s: store inactive", event.kind, event.row.id)
            return
        owner_id = self._owner_id
        self._apply(lambda items: apply_change(items, event, owner_id))

    async def dispose(self) -> None:
        """Release the subscription exactly once and discard the list. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._ready = False
        handle, self._subscription = self._subscription, None
        self._items = []
        self._listeners.clear()
        self.status.clear()
        if handle is not None:
            await self._release(handle)
        logger.info("Disposed bookmark store for owner %s", self._owner_id)

    def _apply(self, mutate: Callable[[list[Bookmark]], list[Bookmark]]) -> None:
        """Single entry point for every change to the visible list."""
        updated = mutate(self._items)
        if updated is self._items:
            return
        self._items = updated
        snapshot = tuple(updated)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Bookmark list listener failed")

    def _initial_list(self, rows: list[Bookmark]) -> list[Bookmark]:
        """Keep rows that satisfy the visible list invariants, newest first."""
        seen: set[int] = set()
        kept = []
        for row in rows:
            if row.owner_id != self._owner_id or row.is_deleted or row.id in seen:
                continue
            seen.add(row.id)
            kept.append(row)
        if len(kept) != len(rows):
            logger.warning(
                "Dropped %d fetched rows that were deleted, duplicated, or not owned by %s",
                len(rows) - len(kept),
                self._owner_id,
            )
        return sort_newest_first(kept)

    async def _subscribe(self, owner_id: str) -> None:
        if not self._is_current():
            return
        try:
            handle = await self._channel.subscribe(owner_id, self.handle_event)
        except SubscriptionError as e:
            logger.warning(
                "Live updates unavailable for owner %s: %s", owner_id, e.detail or e.message,
            )
            return
        except Exception:
            logger.exception("Unexpected failure subscribing to changes for owner %s", owner_id)
            return

        if not self._is_current():
            # Disposed while the handshake was in flight
            await self._release(handle)
            return
        self._subscription = handle

    async def _release(self, handle: SubscriptionHandle) -> None:
        try:
            await self._channel.unsubscribe(handle)
        except Exception:
            logger.exception("Failed to release change subscription on %s", handle.channel)

    def _is_current(self) -> bool:
        return not self._disposed

    def _require_active(self) -> str:
        if self._disposed:
            raise InvalidStateError("Bookmark store has been disposed")
        if not self._ready or self._owner_id is None:
            raise InvalidStateError("Bookmark store is not initialized")
        return self._owner_id

    def _classify(self, exc: Exception, fallback_message: str) -> BookmarkStoreError:
        if isinstance(exc, BookmarkStoreError):
            return exc
        logger.exception("Unexpected bookmark backend failure")
        return TransientBackendError(fallback_message, detail=str(exc))
