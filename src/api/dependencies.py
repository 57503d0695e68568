"""FastAPI dependencies for injection."""
from fastapi import Depends, HTTPException, Request, status

from core.auth import get_current_user_id
from core.config import get_settings
from services.session_registry import SessionRegistry
from services.sync_store import BookmarkSyncStore


def get_registry(request: Request) -> SessionRegistry:
    """Session registry created by the application lifespan."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bookmark sessions are not available",
        )
    return registry


async def get_current_store(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> BookmarkSyncStore:
    """The current user's sync store, opening the session on first use."""
    return await registry.open(user_id)


__all__ = [
    "get_current_store",
    "get_current_user_id",
    "get_registry",
    "get_settings",
]
