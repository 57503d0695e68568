"""Session lifecycle endpoints."""
from fastapi import APIRouter, Depends, Response

from api.dependencies import get_registry
from core.auth import get_current_user_id
from services.session_registry import SessionRegistry

router = APIRouter(prefix="/session", tags=["session"])


@router.post("/end", status_code=204)
async def end_session(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    """Dispose the caller's sync store and release its change subscription."""
    await registry.close(user_id)
    return Response(status_code=204)
