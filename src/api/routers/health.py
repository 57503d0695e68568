"""Health check endpoints."""
import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel

from core.redis import get_redis_client


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    redis: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check application, database, and change channel health."""
    backend = getattr(request.app.state, "backend", None)
    db_status = "healthy" if backend is not None and await backend.ping() else "unhealthy"

    redis_client = get_redis_client()
    if redis_client is None or not redis_client.is_connected:
        redis_status = "disabled"
    elif await redis_client.ping():
        redis_status = "healthy"
    else:
        redis_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" and redis_status != "unhealthy" else "degraded",
        database=db_status,
        redis=redis_status,
    )
