"""Site lookups and domain validation."""

import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.models.tables import Site

DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{1,61}[a-zA-Z0-9]\.[a-zA-Z]{2,}$")


def is_valid_domain(domain: str) -> bool:
    return bool(DOMAIN_RE.match(domain))


def parse_site_id(raw: str) -> UUID | None:
    try:
        return UUID(str(raw))
    except ValueError:
        return None


async def get_site_anonymous(db: AsyncSession, site_id: str | UUID) -> Site | None:
    """Look a site up without any per-user access check.

    Used only by the tracking endpoints, which run on third-party pages
    with no session.
    """
    sid = site_id if isinstance(site_id, UUID) else parse_site_id(site_id)
    if sid is None:
        return None
    result = await db.execute(select(Site).where(Site.id == sid))
    return result.scalar_one_or_none()
