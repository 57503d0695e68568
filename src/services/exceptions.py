"""Shared exceptions for bookmark backend, change channel, and sync store operations."""
from enum import StrEnum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

UNIQUE_VIOLATION_SQLSTATE = "23505"


class ErrorKind(StrEnum):
    """Classification surfaced to the presentation layer."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    SCHEMA = "schema"
    PERMISSION = "permission"
    TRANSIENT = "transient"
    SUBSCRIPTION = "subscription"


class InvalidStateError(Exception):
    """
    Raised when an operation is invalid for a resource's current state.

    Used by the sync store when it is called before init() or after dispose().
    This is a caller precondition failure, not a backend failure, so it is
    raised rather than surfaced through the status signal.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class BookmarkStoreError(Exception):
    """
    Base class for classified failures surfaced by the sync store.

    `message` is the user-facing text; `detail` keeps the underlying cause for logs.
    """

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, detail: str | None = None) -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


class BookmarkValidationError(BookmarkStoreError):
    """Raised when input to add() is malformed. Never reaches the backend."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class DuplicateUrlError(BookmarkStoreError):
    """Raised when a bookmark with the same URL already exists for the user."""

    kind = ErrorKind.CONFLICT

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(
            "This URL is already bookmarked!",
            detail=f"A bookmark with URL '{url}' already exists",
        )


class SchemaError(BookmarkStoreError):
    """Raised when the bookmark table is missing or misconfigured."""

    kind = ErrorKind.SCHEMA

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            'Table "sbookmarktbl" not found. Check that the bookmark table exists '
            "in the configured schema.",
            detail=detail,
        )


class BackendPermissionError(BookmarkStoreError):
    """Raised when the database role lacks grants on the bookmark table."""

    kind = ErrorKind.PERMISSION

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            "Permission denied. Grant permissions on the bookmark table to the "
            "application role.",
            detail=detail,
        )


class TransientBackendError(BookmarkStoreError):
    """Generic network or backend failure. Not retried automatically."""

    kind = ErrorKind.TRANSIENT


class SubscriptionError(BookmarkStoreError):
    """Raised when the change channel cannot be established or drops."""

    kind = ErrorKind.SUBSCRIPTION

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("Live updates are unavailable.", detail=detail)


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Check whether an IntegrityError was caused by a unique constraint."""
    orig = exc.orig
    for attr in ("pgcode", "sqlstate"):
        if getattr(orig, attr, None) == UNIQUE_VIOLATION_SQLSTATE:
            return True
    text = str(exc).lower()
    return "unique" in text or "duplicate key" in text


def classify_database_error(
    exc: Exception,
    *,
    url: str | None = None,
    fallback_message: str = "Request failed",
) -> BookmarkStoreError:
    """
    Convert a database exception into a classified BookmarkStoreError.

    Args:
        exc: The exception raised by SQLAlchemy or the driver.
        url: URL being inserted, used for duplicate URL errors.
        fallback_message: User-facing message for transient failures.

    Returns:
        The classified error. Already-classified errors are returned unchanged.
    """
    if isinstance(exc, BookmarkStoreError):
        return exc

    detail = str(exc)
    if isinstance(exc, IntegrityError) and url is not None and _is_unique_violation(exc):
        return DuplicateUrlError(url)

    if isinstance(exc, SQLAlchemyError):
        lowered = detail.lower()
        if "does not exist" in lowered or "relation" in lowered or "no such table" in lowered:
            return SchemaError(detail)
        if "permission" in lowered or "denied" in lowered:
            return BackendPermissionError(detail)

    return TransientBackendError(fallback_message, detail=detail)
