"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import bookmarks, health, session
from core.config import Settings, get_settings
from core.redis import RedisClient, set_redis_client
from db.session import create_engine, create_session_factory
from services.bookmark_backend import SqlBookmarkBackend
from services.change_channel import ChangeChannel, LocalChangeChannel, RedisChangeChannel
from services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


def build_channel(app_settings: Settings, redis_client: RedisClient) -> ChangeChannel:
    """Use Redis pub/sub when connected, otherwise fall back to in-process delivery."""
    if redis_client.is_connected:
        return RedisChangeChannel(redis_client, prefix=app_settings.change_channel_prefix)
    logger.warning("Redis unavailable; change events are delivered in-process only")
    return LocalChangeChannel(prefix=app_settings.change_channel_prefix)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: Connect to Redis
    redis_client = RedisClient(
        url=app_settings.redis_url,
        enabled=app_settings.redis_enabled,
        pool_size=app_settings.redis_pool_size,
    )
    await redis_client.connect()
    set_redis_client(redis_client)

    # Startup: Database backend and per-session stores
    engine = create_engine(app_settings.database_url)
    channel = build_channel(app_settings, redis_client)
    backend = SqlBookmarkBackend(create_session_factory(engine), channel)
    registry = SessionRegistry.for_backend(
        backend,
        channel,
        error_display_seconds=app_settings.error_display_seconds,
        favicon_template=app_settings.favicon_url_template,
        rollback_failed_deletes=app_settings.rollback_failed_deletes,
    )
    app.state.backend = backend
    app.state.registry = registry

    yield

    # Shutdown: release every subscription before closing Redis
    await registry.close_all()
    app.state.registry = None
    app.state.backend = None
    await engine.dispose()
    await redis_client.close()
    set_redis_client(None)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response


app_settings = get_settings()

app = FastAPI(
    title="Smart Bookmarks API",
    description="Personal bookmarks with live synchronization across sessions.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(bookmarks.router)
app.include_router(session.router)
