"""
Pure reconciliation rules for a visible bookmark list.

Each function takes the current list and returns the new one. When nothing
changes the input list object itself is returned, so callers can detect no-ops
with `is`. All rules are idempotent and do not depend on arrival order between a
local mutation and the change event describing the same row.
"""
import logging

from schemas.bookmark import Bookmark
from schemas.events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


def index_of(items: list[Bookmark], bookmark_id: int) -> int | None:
    """Position of the entry with `bookmark_id`, or None."""
    for index, item in enumerate(items):
        if item.id == bookmark_id:
            return index
    return None


def prepend_if_absent(items: list[Bookmark], bookmark: Bookmark) -> list[Bookmark]:
    """Put `bookmark` at the front unless an entry with its id is already present."""
    if index_of(items, bookmark.id) is not None:
        return items
    return [bookmark, *items]


def remove_by_id(items: list[Bookmark], bookmark_id: int) -> list[Bookmark]:
    """Drop the entry with `bookmark_id`; no-op if absent."""
    index = index_of(items, bookmark_id)
    if index is None:
        return items
    return items[:index] + items[index + 1:]


def replace_in_place(items: list[Bookmark], bookmark: Bookmark) -> list[Bookmark]:
    """Swap in the new version of an entry at the same position; no-op if absent."""
    index = index_of(items, bookmark.id)
    if index is None or items[index] == bookmark:
        return items
    return [*items[:index], bookmark, *items[index + 1:]]


def insert_ordered(items: list[Bookmark], bookmark: Bookmark) -> list[Bookmark]:
    """
    Insert at the position implied by created_at descending (ties: id descending).

    Used to restore an entry whose optimistic removal is rolled back.
    """
    if index_of(items, bookmark.id) is not None:
        return items
    key = (bookmark.created_at, bookmark.id)
    for index, item in enumerate(items):
        if (item.created_at, item.id) < key:
            return [*items[:index], bookmark, *items[index:]]
    return [*items, bookmark]


def sort_newest_first(items: list[Bookmark]) -> list[Bookmark]:
    """Order by created_at descending, ties broken by id descending."""
    return sorted(items, key=lambda b: (b.created_at, b.id), reverse=True)


def apply_change(items: list[Bookmark], event: ChangeEvent, owner_id: str) -> list[Bookmark]:
    """
    Merge one change event into the visible list.

    - insert: prepend unless the id is already present
    - update, deleted: remove the id
    - update, active: replace in place, ignore if absent
    - delete: remove the id

    Events for another owner never touch the list.
    """
    row = event.row
    if row.owner_id != owner_id:
        logger.warning("Ignoring %s event for bookmark %s of another owner", event.kind, row.id)
        return items

    if event.kind == ChangeKind.INSERT:
        if row.is_deleted:
            return remove_by_id(items, row.id)
        return prepend_if_absent(items, row)
    if event.kind == ChangeKind.UPDATE:
        if row.is_deleted:
            return remove_by_id(items, row.id)
        return replace_in_place(items, row)
    if event.kind == ChangeKind.DELETE:
        return remove_by_id(items, row.id)
    return items
