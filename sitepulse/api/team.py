"""
Team API: members, invitations, acceptance.

  GET    /api/sites/{site_id}/team              members + pending invitations
  POST   /api/sites/{site_id}/team              invite {email, role}
  DELETE /api/sites/{site_id}/team/{user_id}    remove a member (never the owner)
  POST   /api/invitations/cancel                {invitation_id}
  POST   /api/invitations/{token}               accept

Rule violations raise TeamError (400, message passed through); sites the
caller cannot see raise NotFound (404).
"""

import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.core import team
from sitepulse.middleware.supabase_auth import AuthContext, require_user
from sitepulse.models.database import get_db
from sitepulse.models.tables import INVITABLE_ROLES, Invitation, TeamMember

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["team"])


class InviteRequest(BaseModel):
    email: str | None = None
    role: str | None = None


class CancelInvitationRequest(BaseModel):
    invitation_id: UUID | None = None


def _iso(ts: datetime.datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def member_payload(member: TeamMember, email: str | None) -> dict:
    return {
        "id": str(member.id),
        "site_id": str(member.site_id),
        "user_id": str(member.user_id),
        "role": member.role,
        "invited_by": str(member.invited_by) if member.invited_by else None,
        "created_at": _iso(member.created_at),
        "email": email or "Unknown",
    }


def invitation_payload(invitation: Invitation, include_token: bool = False) -> dict:
    data = {
        "id": str(invitation.id),
        "site_id": str(invitation.site_id),
        "email": invitation.email,
        "role": invitation.role,
        "status": invitation.status,
        "invited_by": str(invitation.invited_by),
        "expires_at": _iso(invitation.expires_at),
        "created_at": _iso(invitation.created_at),
    }
    if include_token:
        data["token"] = invitation.token
    return data


@router.get("/sites/{site_id}/team")
async def get_team(
    site_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await team.get_member_site(db, site_id, auth.user_id)
    members, invitations = await team.list_team(db, site_id)
    return {
        "team_members": [member_payload(m, email) for m, email in members],
        "invitations": [invitation_payload(i) for i in invitations],
    }


@router.post("/sites/{site_id}/team", status_code=201)
async def invite(
    site_id: UUID,
    req: InviteRequest,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    if not req.email or not req.role:
        raise HTTPException(status_code=400, detail="Email and role are required")
    if req.role not in INVITABLE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")

    invitation = await team.invite_member(db, site_id, auth.user_id, req.email, req.role)
    # Email delivery is out of scope; the inviter shares the token link.
    return {"invitation": invitation_payload(invitation, include_token=True)}


@router.delete("/sites/{site_id}/team/{user_id}")
async def remove(
    site_id: UUID,
    user_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await team.remove_member(db, site_id, auth.user_id, user_id)
    return {"success": True}


# Declared before /invitations/{token} so "cancel" is not taken for a token.
@router.post("/invitations/cancel")
async def cancel(
    req: CancelInvitationRequest,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    if req.invitation_id is None:
        raise HTTPException(status_code=400, detail="Invitation ID is required")
    await team.cancel_invitation(db, req.invitation_id, auth.user_id)
    return {"success": True}


@router.post("/invitations/{token}")
async def accept(
    token: str,
    auth: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    member = await team.accept_invitation(db, token, auth)
    return {"success": True, "site_id": str(member.site_id), "role": member.role}
