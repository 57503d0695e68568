"""Most-recent-error signal with automatic clearing."""
import asyncio
import logging

from services.exceptions import BookmarkStoreError

logger = logging.getLogger(__name__)


class StatusSignal:
    """
    Holds the most recent failure for display, clearing it after a fixed duration.

    A newer error replaces the current one and restarts the timer. Without a
    running event loop the error is kept until replaced or cleared.
    """

    def __init__(self, display_seconds: float = 3.0) -> None:
        self._display_seconds = display_seconds
        self._current: BookmarkStoreError | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def current(self) -> BookmarkStoreError | None:
        """The error being displayed, or None."""
        return self._current

    @property
    def message(self) -> str | None:
        """User-facing message of the current error, or None."""
        return self._current.message if self._current else None

    def report(self, error: BookmarkStoreError) -> None:
        """Display `error`, replacing any current one."""
        self._cancel_timer()
        self._current = error
        logger.warning(
            "Bookmark store error (%s): %s%s",
            error.kind,
            error.message,
            f" [{error.detail}]" if error.detail else "",
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self._display_seconds, self.clear)

    def clear(self) -> None:
        """Remove the current error."""
        self._cancel_timer()
        self._current = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
