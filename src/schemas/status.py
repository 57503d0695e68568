"""Pydantic schemas for the store status signal."""
from pydantic import BaseModel

from services.exceptions import BookmarkStoreError, ErrorKind


class StatusResponse(BaseModel):
    """Most recent failure, or nulls when there is nothing to show."""

    kind: ErrorKind | None = None
    message: str | None = None
    live: bool

    @classmethod
    def from_error(cls, error: BookmarkStoreError | None, *, live: bool) -> "StatusResponse":
        """Build a response from the store's current error."""
        if error is None:
            return cls(live=live)
        return cls(kind=error.kind, message=error.message, live=live)
