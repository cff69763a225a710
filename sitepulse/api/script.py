"""
Tracking script delivery: GET /api/script/{site_id}

Returns a self-contained snippet that:
  - bails out when Do-Not-Track is on
  - keeps a random UUID-like session id in localStorage (sa_session_id)
  - posts a ping to /api/track on load and on every history navigation
  - swallows network errors so the host page never notices
"""

import json

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.config import get_settings
from sitepulse.core.sites import get_site_anonymous
from sitepulse.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["tracking"])

SCRIPT_TEMPLATE = """(function() {
  'use strict';

  if (navigator.doNotTrack === '1' || window.doNotTrack === '1') {
    return;
  }

  var endpoint = %(endpoint)s;
  var siteId = %(site_id)s;

  var sessionId = null;
  try { sessionId = localStorage.getItem('sa_session_id'); } catch (e) {}
  if (!sessionId) {
    sessionId = 'xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx'.replace(/[xy]/g, function(c) {
      var r = Math.random() * 16 | 0;
      var v = c === 'x' ? r : (r & 0x3 | 0x8);
      return v.toString(16);
    });
    try { localStorage.setItem('sa_session_id', sessionId); } catch (e) {}
  }

  function track() {
    fetch(endpoint, {
      method: 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: JSON.stringify({
        site_id: siteId,
        session_id: sessionId,
        page: window.location.pathname,
        referrer: document.referrer || null,
        timestamp: new Date().toISOString()
      })
    }).catch(function() {});
  }

  track();

  var originalPushState = history.pushState;
  var originalReplaceState = history.replaceState;

  history.pushState = function() {
    originalPushState.apply(history, arguments);
    setTimeout(track, 0);
  };

  history.replaceState = function() {
    originalReplaceState.apply(history, arguments);
    setTimeout(track, 0);
  };

  window.addEventListener('popstate', track);
})();
"""


def render_tracking_script(site_id: str, base_url: str) -> str:
    return SCRIPT_TEMPLATE % {
        "endpoint": json.dumps(f"{base_url.rstrip('/')}/api/track"),
        "site_id": json.dumps(site_id),
    }


@router.get("/script/{site_id}")
async def tracking_script(site_id: str, db: AsyncSession = Depends(get_db)):
    settings = get_settings()

    site = await get_site_anonymous(db, site_id)
    if not site:
        return PlainTextResponse("Site not found", status_code=404)

    script = render_tracking_script(str(site.id), settings.base_url)
    return Response(
        content=script,
        media_type="application/javascript",
        headers={
            "Cache-Control": f"public, max-age={settings.script_cache_seconds}",
            "Access-Control-Allow-Origin": "*",
        },
    )
