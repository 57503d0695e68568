"""Bookmark endpoints backed by the current session's sync store."""
from fastapi import APIRouter, Depends, HTTPException, Response

from api.dependencies import get_current_store
from schemas.bookmark import BookmarkCreate, BookmarkListResponse, BookmarkResponse
from schemas.status import StatusResponse
from services.exceptions import ErrorKind, InvalidStateError
from services.sync_store import BookmarkSyncStore

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])

ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.SCHEMA: 500,
    ErrorKind.PERMISSION: 500,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.SUBSCRIPTION: 503,
}

SESSION_ENDED_DETAIL = "Session has ended. Retry the request."


@router.get("/", response_model=BookmarkListResponse)
async def list_bookmarks(
    store: BookmarkSyncStore = Depends(get_current_store),
) -> BookmarkListResponse:
    """Return the visible list, newest first."""
    items = [BookmarkResponse.model_validate(b) for b in store.bookmarks]
    return BookmarkListResponse(items=items, total=len(items))


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    store: BookmarkSyncStore = Depends(get_current_store),
) -> BookmarkResponse:
    """Add a bookmark. Failures are also kept on the status endpoint."""
    try:
        bookmark = await store.add(data)
    except InvalidStateError:
        # The session was ended between resolving the store and using it
        raise HTTPException(status_code=409, detail=SESSION_ENDED_DETAIL)
    if bookmark is None:
        error = store.status.current
        if error is None:
            raise HTTPException(status_code=503, detail="Failed to add bookmark")
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(error.kind, 503),
            detail=error.message,
        )
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: int,
    store: BookmarkSyncStore = Depends(get_current_store),
) -> Response:
    """
    Remove a bookmark from the list and soft-delete it.

    204 even when the backend delete fails: the bookmark is hidden immediately and
    the failure is reported through GET /bookmarks/status. 409 if the session was
    ended while the request was in flight.
    """
    try:
        await store.remove(bookmark_id)
    except InvalidStateError:
        raise HTTPException(status_code=409, detail=SESSION_ENDED_DETAIL)
    return Response(status_code=204)


@router.get("/status", response_model=StatusResponse)
async def get_status(
    store: BookmarkSyncStore = Depends(get_current_store),
) -> StatusResponse:
    """Most recent failure (auto-clears after a few seconds) and live update state."""
    return StatusResponse.from_error(store.status.current, live=store.is_live)
