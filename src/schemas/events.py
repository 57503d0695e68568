"""Change notification event schemas."""
import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from schemas.bookmark import Bookmark, bookmark_from_row


class ChangeKind(StrEnum):
    """Kind of row-level change delivered by the change channel."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A row-level change for one owner's bookmarks."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    row: Bookmark


def encode_change(kind: ChangeKind, row: dict[str, Any]) -> str:
    """
    Encode a backend row change as a channel message.

    The row travels in its backend layout; subscribers convert it on receipt.
    """
    return json.dumps({"kind": kind.value, "row": row}, default=str)


def decode_change(message: str | bytes) -> ChangeEvent:
    """
    Decode a channel message into a ChangeEvent.

    Accepts upper-case kinds ("INSERT") as sent by database change feeds.

    Raises:
        ValueError: If the message is not valid JSON or the row is malformed.
    """
    try:
        payload = json.loads(message)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid change message: {e}") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("row"), dict):
        raise ValueError("Change message must be an object with a 'row' object")
    kind = ChangeKind(str(payload.get("kind", "")).lower())
    return ChangeEvent(kind=kind, row=bookmark_from_row(payload["row"]))
