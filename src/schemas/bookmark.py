"""Pydantic schemas for bookmarks, plus the single row <-> domain conversion point."""
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from core.config import get_settings
from models.bookmark import PLACEHOLDER
from services.exceptions import BookmarkValidationError
from services.utils import is_valid_url

UNTITLED = "Untitled"
TAG_SEPARATOR = ","


class Bookmark(BaseModel):
    """
    Domain bookmark, as held in a sync store's visible list.

    Absent values are None here; the backend's "NA" placeholders never get past
    bookmark_from_row.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    owner_id: str
    url: str
    title: str
    description: str | None = None
    favicon: str | None = None
    tags: frozenset[str] = frozenset()
    created_at: datetime
    is_deleted: bool = False


def normalize_tags(tags: Iterable[str] | str | None) -> frozenset[str]:
    """
    Trim tags and drop blank entries.

    A single string is treated as comma-separated input (the add form's format).

    Raises:
        ValueError: If a tag contains a comma (tags are stored comma-joined).
    """
    if tags is None:
        return frozenset()
    if isinstance(tags, str):
        tags = tags.split(TAG_SEPARATOR)
    normalized = set()
    for tag in tags:
        if not isinstance(tag, str):
            raise ValueError(f"Invalid tag: {tag!r}")
        trimmed = tag.strip()
        if not trimmed:
            continue
        if TAG_SEPARATOR in trimmed:
            raise ValueError(f"Invalid tag: '{trimmed}'. Tags cannot contain commas.")
        normalized.add(trimmed)
    return frozenset(normalized)


class BookmarkCreate(BaseModel):
    """Schema for adding a new bookmark."""

    url: str
    title: str
    description: str | None = None
    favicon: str | None = None
    tags: frozenset[str] = frozenset()

    @field_validator("url", mode="before")
    @classmethod
    def check_url(cls, v: Any) -> str:
        """Require a non-empty absolute URL. The original string is kept as-is."""
        url = v.strip() if isinstance(v, str) else ""
        if not url:
            raise ValueError("URL is required")
        if not is_valid_url(url):
            raise ValueError("Please enter a valid URL")
        return url

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, v: Any) -> str:
        """Require a non-empty title within the length limit."""
        title = v.strip() if isinstance(v, str) else ""
        if not title:
            raise ValueError("Title is required")
        max_len = get_settings().max_title_length
        if len(title) > max_len:
            raise ValueError(
                f"Title exceeds maximum length of {max_len:,} characters "
                f"(got {len(title):,} characters).",
            )
        return title

    @field_validator("description", "favicon", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat blank optional strings as absent."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        """Validate description length."""
        max_len = get_settings().max_description_length
        if v is not None and len(v) > max_len:
            raise ValueError(
                f"Description exceeds maximum length of {max_len:,} characters "
                f"(got {len(v):,} characters).",
            )
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def check_tags(cls, v: Any) -> frozenset[str]:
        """Normalize and validate tags."""
        return normalize_tags(v)


def validation_error_from_pydantic(exc: ValidationError) -> BookmarkValidationError:
    """Convert the first pydantic error into a BookmarkValidationError."""
    errors = exc.errors()
    if not errors:
        return BookmarkValidationError("Invalid bookmark")
    first = errors[0]
    field = str(first["loc"][0]) if first.get("loc") else None
    cause = first.get("ctx", {}).get("error")
    message = str(cause) if cause is not None else first["msg"]
    if message == "Field required" and field:
        message = f"{'URL' if field == 'url' else field.capitalize()} is required"
    return BookmarkValidationError(message, field=field)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == PLACEHOLDER:
        return None
    return text


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str):
        try:
            return datetime.fromtimestamp(float(value), tz=UTC)
        except ValueError:
            parsed = datetime.fromisoformat(value)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Invalid created_at value: {value!r}")


def bookmark_from_row(row: Mapping[str, Any]) -> Bookmark:
    """
    Convert a backend row into a domain Bookmark.

    This is the only place "NA" placeholders and comma-joined tags are translated.

    Raises:
        ValueError: If a required column is missing or malformed.
    """
    try:
        bookmark_id = int(row["bookmark_id"])
        owner_id = str(row["user_id"])
        url = str(row["url"])
        created_at = _to_datetime(row["created_at"])
    except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
        # OverflowError/OSError: ids or timestamps outside the platform range (1e400, Infinity)
        raise ValueError(f"Malformed bookmark row: {e}") from e

    raw_tags = _optional_text(row.get("tags"))
    return Bookmark(
        id=bookmark_id,
        owner_id=owner_id,
        url=url,
        title=_optional_text(row.get("title")) or UNTITLED,
        description=_optional_text(row.get("description")),
        favicon=_optional_text(row.get("favicon_url")),
        tags=normalize_tags(raw_tags) if raw_tags else frozenset(),
        created_at=created_at,
        is_deleted=bool(row.get("is_deleted", False)),
    )


def bookmark_insert_values(
    owner_id: str,
    *,
    url: str,
    title: str,
    description: str | None = None,
    favicon: str | None = None,
    tags: Iterable[str] = (),
    now: float,
) -> dict[str, Any]:
    """Build the column values for a new backend row, writing placeholders for absent values."""
    tag_list = sorted(normalize_tags(tags))
    return {
        "user_id": owner_id,
        "url": url,
        "title": title or PLACEHOLDER,
        "description": description or PLACEHOLDER,
        "favicon_url": favicon or PLACEHOLDER,
        "tags": ", ".join(tag_list) if tag_list else PLACEHOLDER,
        "is_favorite": False,
        "is_archived": False,
        "is_deleted": False,
        "click_count": 0,
        "folder_name": "General",
        "visibility": "private",
        "created_at": now,
        "updated_at": now,
    }


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    title: str
    description: str | None
    favicon: str | None
    tags: list[str]
    created_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def sort_tags(cls, v: Iterable[str]) -> list[str]:
        """Tags are a set in the domain model; respond with a stable order."""
        return sorted(v)


class BookmarkListResponse(BaseModel):
    """Schema for the visible list snapshot."""

    items: list[BookmarkResponse]
    total: int
