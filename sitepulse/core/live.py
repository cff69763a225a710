"""
Real-time active-user counter.

Two independent triggers refresh a site's count:
  1. a fixed-interval poll (live_poll_interval_seconds)
  2. a notification published by /api/track for every stored event

Both run the same recomputation, which is idempotent, so no ordering or
dedupe between them is needed. Notifications fan out through an
in-process hub: one bounded queue per open stream. When a queue is full
the extra notification is dropped; the pending one already guarantees a
fresh read.
"""

import asyncio
import datetime
import json
from collections import defaultdict
from typing import AsyncIterator, Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.config import get_settings
from sitepulse.core.aggregation import count_active_sessions
from sitepulse.models.tables import Event

import structlog

logger = structlog.get_logger()

SUBSCRIBER_QUEUE_SIZE = 1


class LiveHub:
    """Site id -> subscriber queues."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, site_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers[site_id].add(queue)
        return queue

    def unsubscribe(self, site_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(site_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[site_id]

    def publish(self, site_id: str) -> int:
        """Wake every stream watching ``site_id``. Returns how many were notified."""
        notified = 0
        for queue in list(self._subscribers.get(site_id, ())):
            try:
                queue.put_nowait(None)
                notified += 1
            except asyncio.QueueFull:
                pass
        return notified

    def subscriber_count(self, site_id: str) -> int:
        return len(self._subscribers.get(site_id, ()))


hub = LiveHub()


def get_hub() -> LiveHub:
    return hub


async def fetch_active_users(db: AsyncSession, site_id: UUID, now: datetime.datetime | None = None) -> int:
    """Distinct sessions for ``site_id`` in the trailing active window."""
    settings = get_settings()
    now = now or datetime.datetime.now(datetime.timezone.utc)
    window = datetime.timedelta(seconds=settings.active_window_seconds)

    result = await db.execute(
        select(Event.session_id, Event.timestamp).where(
            Event.site_id == site_id,
            Event.timestamp >= now - window,
        )
    )
    return count_active_sessions(result.all(), now=now, active_window=window)


def format_sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def active_user_stream(
    site_id: UUID,
    session_factory: Callable[[], AsyncSession],
    live_hub: LiveHub | None = None,
    poll_interval: float | None = None,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames with the active-user count for a site.

    Emits once immediately, then after every poll tick or hub notification.
    Each recomputation opens its own short-lived session.
    """
    live_hub = live_hub or hub
    interval = poll_interval if poll_interval is not None else get_settings().live_poll_interval_seconds
    key = str(site_id)
    queue = live_hub.subscribe(key)

    try:
        while True:
            try:
                async with session_factory() as db:
                    count = await fetch_active_users(db, site_id)
                yield format_sse("active_users", {"active_users": count, "connected": True})
            except Exception as exc:
                logger.error("active_users_refresh_failed", site_id=key, error=str(exc))
                yield format_sse("error", {"connected": False})

            try:
                await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            if is_disconnected is not None and await is_disconnected():
                break
    finally:
        live_hub.unsubscribe(key, queue)
