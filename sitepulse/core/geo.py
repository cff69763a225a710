"""
Client IP extraction and coarse geolocation.

Geo comes from an ipapi-compatible HTTP service:
  GET {geo_lookup_url}/{ip}/json/  ->  {"city": ..., "country_name": ...}

Lookups are best-effort. Loopback/private addresses are never sent out,
and any failure degrades to "Unknown" for both fields.
"""

import ipaddress
from dataclasses import dataclass

import httpx
from fastapi import Request

from sitepulse.config import get_settings
from sitepulse.models.tables import UNKNOWN

import structlog

logger = structlog.get_logger()


@dataclass
class GeoInfo:
    city: str = UNKNOWN
    country: str = UNKNOWN


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (addr.is_private or addr.is_loopback or addr.is_link_local
                or addr.is_reserved or addr.is_unspecified)


async def lookup_location(ip: str, client: httpx.AsyncClient | None = None) -> GeoInfo:
    """Resolve city/country for an IP. Never raises."""
    if not is_public_ip(ip):
        return GeoInfo()

    settings = get_settings()
    url = f"{settings.geo_lookup_url.rstrip('/')}/{ip}/json/"

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.geo_lookup_timeout_seconds) as own_client:
                resp = await own_client.get(url)
        else:
            resp = await client.get(url, timeout=settings.geo_lookup_timeout_seconds)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("geo_lookup_failed", ip=ip, error=str(exc))
        return GeoInfo()

    if not isinstance(data, dict):
        return GeoInfo()

    return GeoInfo(
        city=data.get("city") or UNKNOWN,
        country=data.get("country_name") or UNKNOWN,
    )
