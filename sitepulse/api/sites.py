"""
Site management API: list, create and fetch tracked sites.

Security:
  - Requires a Supabase bearer token
  - Listing and fetching are scoped to sites the caller is a team member of
  - The creator becomes the site's owner, in the same transaction
"""

import datetime
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.core.sites import is_valid_domain
from sitepulse.core.team import get_member_site
from sitepulse.middleware.supabase_auth import AuthContext, require_user
from sitepulse.models.database import get_db
from sitepulse.models.tables import Site, TeamMember

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/sites", tags=["sites"])


class CreateSiteRequest(BaseModel):
    domain: str | None = None


class SiteResponse(BaseModel):
    id: UUID
    owner_id: UUID
    domain: str
    created_at: datetime.datetime | None = None
    role: str | None = None

    model_config = {"from_attributes": True}


def site_payload(site: Site, role: str | None = None) -> dict:
    data = SiteResponse.model_validate(site).model_dump(mode="json")
    data["role"] = role
    return data


@router.get("")
async def list_sites(
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Sites the caller belongs to, newest first."""
    result = await db.execute(
        select(Site, TeamMember.role)
        .join(TeamMember, TeamMember.site_id == Site.id)
        .where(TeamMember.user_id == auth.user_id)
        .order_by(Site.created_at.desc())
    )
    return {"sites": [site_payload(site, role) for site, role in result.all()]}


@router.post("", status_code=201)
async def create_site(
    req: CreateSiteRequest,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    if not req.domain:
        raise HTTPException(status_code=400, detail="Domain is required")

    domain = req.domain.strip()
    if not is_valid_domain(domain):
        raise HTTPException(status_code=400, detail="Invalid domain format")
    domain = domain.lower()

    existing = await db.execute(select(Site).where(Site.domain == domain))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Domain already exists")

    site = Site(id=uuid4(), owner_id=auth.user_id, domain=domain)
    owner = TeamMember(id=uuid4(), site_id=site.id, user_id=auth.user_id, role="owner")
    db.add(site)
    db.add(owner)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent create of the same domain
        await db.rollback()
        raise HTTPException(status_code=409, detail="Domain already exists")
    await db.refresh(site)

    logger.info("site_created", site_id=str(site.id), domain=domain, owner_id=str(auth.user_id))
    return {"site": site_payload(site, "owner")}


@router.get("/{site_id}")
async def get_site(
    site_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    site, role = await get_member_site(db, site_id, auth.user_id)
    return {"site": site_payload(site, role)}
