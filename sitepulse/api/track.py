"""
Event ingestion: POST /api/track

Called by the embedded tracking script on third-party pages, so:
  - No auth; the site is resolved with an unauthenticated lookup
  - CORS open to any origin
  - Never breaks the host page: anything other than a missing field (400)
    or an unknown site (404) answers {"success": true}

Flow:
  1. Validate required fields
  2. Look up site
  3. Bot filter (acknowledged, not stored)
  4. Client IP -> geo lookup (best-effort, "Unknown" on failure)
  5. UA -> device / OS / browser
  6. Truncate free text, insert event
  7. Notify live active-user streams
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.config import get_settings
from sitepulse.core.bot_detection import check_user_agent
from sitepulse.core.device import parse_device
from sitepulse.core.geo import get_client_ip, lookup_location
from sitepulse.core.live import LiveHub, get_hub
from sitepulse.core.sites import get_site_anonymous
from sitepulse.models.database import get_db
from sitepulse.models.tables import Event

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["tracking"])

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


class TrackPayload(BaseModel):
    site_id: str | None = None
    session_id: str | None = None
    page: str | None = None
    referrer: str | None = None
    timestamp: Any = None  # client clock, ignored

    @field_validator("referrer", mode="before")
    @classmethod
    def _referrer_text_only(cls, value):
        return value if isinstance(value, str) else None


def _json(body: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


def _ok() -> JSONResponse:
    return _json({"success": True})


def truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def sanitize_label(value: str | None, limit: int) -> str | None:
    """Strip and cut a short label; empty becomes NULL."""
    if not value:
        return None
    value = value.strip()[:limit]
    return value or None


def _parse_payload(body) -> TrackPayload | None:
    if not isinstance(body, dict):
        return None
    try:
        payload = TrackPayload.model_validate(body)
    except ValidationError:
        return None
    if not (payload.site_id and payload.session_id and payload.page):
        return None
    return payload


@router.post("/track")
async def track_event(
    request: Request,
    db: AsyncSession = Depends(get_db),
    live_hub: LiveHub = Depends(get_hub),
):
    try:
        body = await request.json()
    except ValueError:
        body = None

    payload = _parse_payload(body)
    if payload is None:
        return _json({"error": "Missing required fields"}, status_code=400)

    settings = get_settings()

    try:
        site = await get_site_anonymous(db, payload.site_id)
        if not site:
            return _json({"error": "Site not found"}, status_code=404)

        user_agent = request.headers.get("user-agent", "")
        verdict = check_user_agent(user_agent)
        if verdict.is_bot:
            logger.info("bot_filtered", site_id=str(site.id), reason=verdict.reason)
            return _ok()

        ip = get_client_ip(request)
        geo = await lookup_location(ip)
        device = parse_device(user_agent)

        text_limit = settings.max_text_length
        label_limit = settings.max_label_length

        event = Event(
            site_id=site.id,
            session_id=payload.session_id[:label_limit],
            page=truncate(payload.page, text_limit),
            referrer=truncate(payload.referrer, text_limit) or None,
            ip_address=ip[:45],
            user_agent=truncate(user_agent, text_limit),
            city=sanitize_label(geo.city, label_limit),
            country=sanitize_label(geo.country, label_limit),
            device_type=sanitize_label(device.device_type, label_limit),
            operating_system=sanitize_label(device.operating_system, label_limit),
            browser=sanitize_label(device.browser, label_limit),
        )
        db.add(event)
        await db.commit()

        live_hub.publish(str(site.id))
        logger.info("event_tracked", site_id=str(site.id), session_id=event.session_id, page=event.page)
    except Exception as exc:
        # The caller is an unattended script on someone else's page
        logger.error("track_failed", site_id=payload.site_id, error=str(exc))

    return _ok()


@router.options("/track")
async def track_preflight():
    return Response(
        status_code=200,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        },
    )
