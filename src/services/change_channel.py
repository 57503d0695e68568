"""
Change notification channels.

A channel delivers row-level insert/update/delete events for one owner's bookmarks
to subscribed handlers. Delivery is best effort: there is no ordering guarantee
relative to the caller's own requests, and events can be lost if a connection
drops. Subscribers must reconcile idempotently.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Protocol

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from core.redis import RedisClient
from schemas.bookmark import bookmark_from_row
from schemas.events import ChangeEvent, ChangeKind, decode_change, encode_change
from services.exceptions import SubscriptionError

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]


def channel_name(prefix: str, owner_id: str) -> str:
    """Name of the channel carrying changes for one owner."""
    return f"{prefix}:{owner_id}"


@dataclass(eq=False)
class SubscriptionHandle:
    """Opaque handle returned by subscribe(); pass it back to unsubscribe()."""

    owner_id: str
    channel: str
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    pubsub: PubSub | None = field(default=None, repr=False)
    task: asyncio.Task | None = field(default=None, repr=False)
    closed: bool = False

    @property
    def is_open(self) -> bool:
        """False once delivery has stopped (released, or the connection dropped)."""
        return not self.closed


class ChangeChannel(Protocol):
    """Push subscription keyed by owner identity."""

    async def subscribe(self, owner_id: str, handler: ChangeHandler) -> SubscriptionHandle:
        """
        Start delivering the owner's change events to `handler`.

        Raises:
            SubscriptionError: If the subscription cannot be established.
        """
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivery for `handle`. Unknown or already released handles are ignored."""
        ...

    async def publish(self, owner_id: str, kind: ChangeKind, row: dict[str, Any]) -> bool:
        """Announce a change to a backend row. Returns False if it could not be sent."""
        ...


def _dispatch(handler: ChangeHandler, event: ChangeEvent, channel: str) -> None:
    try:
        handler(event)
    except Exception:
        logger.exception("Change handler failed for %s event on %s", event.kind, channel)


class LocalChangeChannel:
    """In-process fan-out channel, used when Redis is disabled (single worker only)."""

    def __init__(self, prefix: str = "bookmarks") -> None:
        self._prefix = prefix
        self._handlers: dict[str, dict[str, ChangeHandler]] = defaultdict(dict)

    async def subscribe(self, owner_id: str, handler: ChangeHandler) -> SubscriptionHandle:
        """Register `handler` for the owner's events."""
        handle = SubscriptionHandle(owner_id=owner_id, channel=channel_name(self._prefix, owner_id))
        self._handlers[owner_id][handle.handle_id] = handler
        logger.debug("Subscribed to %s (local)", handle.channel)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove the handler registered under `handle`."""
        handlers = self._handlers.get(handle.owner_id)
        if handlers is None or handlers.pop(handle.handle_id, None) is None:
            logger.debug("Ignoring unsubscribe for unknown handle on %s", handle.channel)
            return
        handle.closed = True
        if not handlers:
            del self._handlers[handle.owner_id]
        logger.debug("Unsubscribed from %s (local)", handle.channel)

    async def publish(self, owner_id: str, kind: ChangeKind, row: dict[str, Any]) -> bool:
        """Deliver the change synchronously to every current subscriber."""
        event = ChangeEvent(kind=kind, row=bookmark_from_row(row))
        name = channel_name(self._prefix, owner_id)
        for handler in list(self._handlers.get(owner_id, {}).values()):
            _dispatch(handler, event, name)
        return True

    def subscriber_count(self, owner_id: str) -> int:
        """Number of live subscriptions for an owner."""
        return len(self._handlers.get(owner_id, {}))


class RedisChangeChannel:
    """
    Change channel backed by Redis pub/sub.

    Each subscription gets its own pub/sub connection and a reader task that
    decodes messages and calls the handler. Malformed messages are skipped. If the
    connection drops, the reader logs the loss, marks the handle closed and stops; the subscriber keeps
    working from its own requests until it subscribes again.
    """

    def __init__(self, redis_client: RedisClient, prefix: str = "bookmarks") -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._active: dict[str, SubscriptionHandle] = {}

    async def subscribe(self, owner_id: str, handler: ChangeHandler) -> SubscriptionHandle:
        """Subscribe to the owner's channel and start the reader task."""
        pubsub = self._redis.pubsub()
        if pubsub is None:
            raise SubscriptionError("Redis is not connected")

        name = channel_name(self._prefix, owner_id)
        try:
            await pubsub.subscribe(name)
        except RedisError as e:
            with suppress(RedisError):
                await pubsub.aclose()
            raise SubscriptionError(f"Failed to subscribe to {name}: {e}") from e

        handle = SubscriptionHandle(owner_id=owner_id, channel=name, pubsub=pubsub)
        handle.task = asyncio.create_task(
            self._listen(handle, pubsub, handler),
            name=f"change-listener:{name}",
        )
        self._active[handle.handle_id] = handle
        logger.info("Subscribed to %s", name)
        return handle

    async def _listen(
        self, handle: SubscriptionHandle, pubsub: PubSub, handler: ChangeHandler,
    ) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = decode_change(message["data"])
                except ValueError as e:
                    logger.warning("Skipping malformed change message on %s: %s", handle.channel, e)
                    continue
                if event.row.owner_id != handle.owner_id:
                    logger.warning(
                        "Skipping change for owner %s delivered on %s",
                        event.row.owner_id,
                        handle.channel,
                    )
                    continue
                _dispatch(handler, event, handle.channel)
        except RedisError as e:
            logger.warning("Change subscription on %s dropped: %s", handle.channel, e)
        except Exception:
            logger.exception("Change subscription on %s stopped unexpectedly", handle.channel)
        finally:
            handle.closed = True

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop the reader task and release the pub/sub connection."""
        if self._active.pop(handle.handle_id, None) is None:
            logger.debug("Ignoring unsubscribe for unknown handle on %s", handle.channel)
            return

        handle.closed = True
        if handle.task is not None:
            handle.task.cancel()
            with suppress(asyncio.CancelledError):
                await handle.task
            handle.task = None

        pubsub = handle.pubsub
        handle.pubsub = None
        if pubsub is not None:
            try:
                await pubsub.unsubscribe(handle.channel)
            except RedisError as e:
                logger.warning("Failed to unsubscribe from %s: %s", handle.channel, e)
            finally:
                with suppress(RedisError):
                    await pubsub.aclose()
        logger.info("Unsubscribed from %s", handle.channel)

    async def publish(self, owner_id: str, kind: ChangeKind, row: dict[str, Any]) -> bool:
        """Publish a backend row change to the owner's channel."""
        return await self._redis.publish(channel_name(self._prefix, owner_id), encode_change(kind, row))

    @property
    def active_subscriptions(self) -> int:
        """Number of subscriptions this channel currently holds."""
        return len(self._active)
