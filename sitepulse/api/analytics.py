"""
Analytics API: dashboard reads for one site.

  GET /api/sites/{site_id}/analytics?days=N&tz=Zone   full aggregation
  GET /api/sites/{site_id}/active-users               trailing-window count
  GET /api/sites/{site_id}/active-users/stream        SSE, live count

All three require team membership (any role) on the site. Aggregates are
recomputed per request from the raw events; nothing is cached.
"""

import datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.api.sites import site_payload
from sitepulse.config import get_settings
from sitepulse.core.aggregation import aggregate_events
from sitepulse.core.live import LiveHub, active_user_stream, fetch_active_users, get_hub
from sitepulse.core.team import get_member_site
from sitepulse.middleware.supabase_auth import AuthContext, require_user
from sitepulse.models.database import get_db, get_session_maker
from sitepulse.models.tables import Event

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/sites", tags=["analytics"])


def get_stream_session_factory():
    """Sessions for the SSE stream, which outlives the request-scoped session."""
    return get_session_maker()


def _resolve_tz(name: str | None) -> datetime.tzinfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid time zone")


@router.get("/{site_id}/analytics")
async def site_analytics(
    site_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    days: int = Query(7, ge=1, le=365),
    tz: str | None = Query(None, max_length=64),
):
    site, role = await get_member_site(db, site_id, auth.user_id)
    zone = _resolve_tz(tz)

    settings = get_settings()
    now = datetime.datetime.now(datetime.timezone.utc)
    cutoff = now - datetime.timedelta(days=days)

    result = await db.execute(
        select(Event).where(
            Event.site_id == site_id,
            Event.timestamp >= cutoff,
        )
    )
    events = result.scalars().all()

    data = aggregate_events(
        events,
        now=now,
        active_window=datetime.timedelta(seconds=settings.active_window_seconds),
        tz=zone,
    )

    logger.info("analytics_computed", site_id=str(site_id), days=days, events=len(events))
    return {
        "site": site_payload(site, role),
        "period_days": days,
        **data.to_dict(),
    }


@router.get("/{site_id}/active-users")
async def active_users(
    site_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await get_member_site(db, site_id, auth.user_id)
    count = await fetch_active_users(db, site_id)
    return {"active_users": count}


@router.get("/{site_id}/active-users/stream")
async def active_users_stream(
    site_id: UUID,
    request: Request,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_stream_session_factory),
    live_hub: LiveHub = Depends(get_hub),
):
    await get_member_site(db, site_id, auth.user_id)

    return StreamingResponse(
        active_user_stream(
            site_id,
            session_factory,
            live_hub=live_hub,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
