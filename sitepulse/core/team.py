"""
Team and invitation rules.

Roles:
  owner   set once when the site is created, never removable
  admin   can invite, cancel invitations and remove non-owner members
  viewer  read-only access to the site's analytics

Permissions are checked against the database on every call; nothing is
cached between requests.

Invitations:
  - one pending invitation per (site, email)
  - never for an email that already belongs to a member
  - accepted only by the user whose email matches, before expires_at
  - a late acceptance attempt flips status to "expired" and fails
"""

import datetime
import secrets
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.config import get_settings
from sitepulse.core.errors import NotFound, TeamError
from sitepulse.middleware.supabase_auth import AuthContext
from sitepulse.models.tables import (
    INVITABLE_ROLES,
    INVITATION_ACCEPTED,
    INVITATION_EXPIRED,
    INVITATION_PENDING,
    MANAGER_ROLES,
    Invitation,
    Site,
    TeamMember,
    User,
)

import structlog

logger = structlog.get_logger()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(ts: datetime.datetime) -> datetime.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)


async def get_membership(db: AsyncSession, site_id: UUID, user_id: UUID) -> TeamMember | None:
    result = await db.execute(
        select(TeamMember).where(
            TeamMember.site_id == site_id,
            TeamMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_member_site(db: AsyncSession, site_id: UUID, user_id: UUID) -> tuple[Site, str]:
    """Return (site, caller's role). Sites the caller cannot see are "not found"."""
    result = await db.execute(
        select(Site, TeamMember.role)
        .join(TeamMember, TeamMember.site_id == Site.id)
        .where(Site.id == site_id, TeamMember.user_id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound("Site not found")
    return row[0], row[1]


async def list_team(db: AsyncSession, site_id: UUID) -> tuple[list[tuple[TeamMember, str]], list[Invitation]]:
    """Members with their email, plus pending invitations. Newest first."""
    members_result = await db.execute(
        select(TeamMember, User.email)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.site_id == site_id)
        .order_by(TeamMember.created_at.desc())
    )
    members = [(row[0], row[1]) for row in members_result.all()]

    invitations_result = await db.execute(
        select(Invitation)
        .where(Invitation.site_id == site_id, Invitation.status == INVITATION_PENDING)
        .order_by(Invitation.created_at.desc())
    )
    return members, list(invitations_result.scalars().all())


async def invite_member(
    db: AsyncSession,
    site_id: UUID,
    inviter_id: UUID,
    email: str,
    role: str,
    now: datetime.datetime | None = None,
) -> Invitation:
    if role not in INVITABLE_ROLES:
        raise TeamError("Invalid role")

    email = email.strip().lower()
    now = now or _utcnow()

    inviter = await get_membership(db, site_id, inviter_id)
    if inviter is None or inviter.role not in MANAGER_ROLES:
        raise TeamError("Insufficient permissions to invite team members")

    pending = await db.execute(
        select(Invitation).where(
            Invitation.site_id == site_id,
            Invitation.email == email,
            Invitation.status == INVITATION_PENDING,
        ).limit(1)
    )
    if pending.scalar_one_or_none():
        raise TeamError("Invitation already sent to this email")

    existing = await db.execute(
        select(TeamMember)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.site_id == site_id, User.email == email)
        .limit(1)
    )
    if existing.scalar_one_or_none():
        raise TeamError("User is already a team member")

    expiry_days = get_settings().invitation_expiry_days
    invitation = Invitation(
        id=uuid4(),
        site_id=site_id,
        email=email,
        role=role,
        invited_by=inviter_id,
        token=generate_invitation_token(),
        status=INVITATION_PENDING,
        expires_at=now + datetime.timedelta(days=expiry_days),
        created_at=now,
    )
    db.add(invitation)
    await db.commit()

    logger.info("invitation_created", site_id=str(site_id), role=role, invited_by=str(inviter_id))
    return invitation


async def accept_invitation(
    db: AsyncSession,
    token: str,
    user: AuthContext,
    now: datetime.datetime | None = None,
) -> TeamMember:
    now = now or _utcnow()

    result = await db.execute(
        select(Invitation).where(
            Invitation.token == token,
            Invitation.status == INVITATION_PENDING,
        )
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise TeamError("Invalid or expired invitation")

    if invitation.email.lower() != (user.email or "").lower():
        raise TeamError("This invitation is not for your email address")

    if _as_aware(invitation.expires_at) < now:
        invitation.status = INVITATION_EXPIRED
        await db.commit()
        logger.info("invitation_expired", invitation_id=str(invitation.id))
        raise TeamError("Invitation has expired")

    if await get_membership(db, invitation.site_id, user.user_id):
        raise TeamError("User is already a team member")

    member = TeamMember(
        id=uuid4(),
        site_id=invitation.site_id,
        user_id=user.user_id,
        role=invitation.role,
        invited_by=invitation.invited_by,
        created_at=now,
    )
    db.add(member)
    invitation.status = INVITATION_ACCEPTED
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent acceptance already created the membership
        await db.rollback()
        raise TeamError("User is already a team member")

    logger.info("invitation_accepted", invitation_id=str(invitation.id), user_id=str(user.user_id))
    return member


async def _require_manager(db: AsyncSession, site_id: UUID, actor_id: UUID) -> TeamMember:
    actor = await get_membership(db, site_id, actor_id)
    if actor is None:
        raise NotFound("Site not found")
    if actor.role not in MANAGER_ROLES:
        raise TeamError("Insufficient permissions to manage team members")
    return actor


async def remove_member(db: AsyncSession, site_id: UUID, actor_id: UUID, user_id: UUID) -> None:
    await _require_manager(db, site_id, actor_id)

    target = await get_membership(db, site_id, user_id)
    if target is None:
        raise NotFound("Team member not found")
    if target.role == "owner":
        raise TeamError("Cannot remove the site owner")

    await db.delete(target)
    await db.commit()
    logger.info("team_member_removed", site_id=str(site_id), user_id=str(user_id), by=str(actor_id))


async def cancel_invitation(db: AsyncSession, invitation_id: UUID, actor_id: UUID) -> None:
    result = await db.execute(
        select(Invitation).where(
            Invitation.id == invitation_id,
            Invitation.status == INVITATION_PENDING,
        )
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFound("Invitation not found")

    actor = await get_membership(db, invitation.site_id, actor_id)
    if actor is None:
        raise NotFound("Invitation not found")
    if actor.role not in MANAGER_ROLES:
        raise TeamError("Insufficient permissions to manage team members")

    await db.delete(invitation)
    await db.commit()
    logger.info("invitation_cancelled", invitation_id=str(invitation_id), by=str(actor_id))
