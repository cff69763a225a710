"""
Supabase authentication middleware for FastAPI.
Validates JWTs server-side by calling Supabase /auth/v1/user.
Auto-creates the local User row on first login.
"""

import datetime
from dataclasses import dataclass
from uuid import UUID as PyUUID, uuid4

import httpx
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitepulse.config import get_settings
from sitepulse.models.database import get_db
from sitepulse.models.tables import User


@dataclass
class AuthContext:
    user_id: PyUUID
    supabase_id: str
    email: str


async def _validate_supabase_token(token: str) -> dict:
    """Call Supabase /auth/v1/user to validate the Bearer token server-side."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{settings.supabase_url}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": settings.supabase_anon_key,
                },
            )
    except httpx.HTTPError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if resp.status_code != 200:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        supabase_user = resp.json()
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not isinstance(supabase_user, dict) or not supabase_user.get("id"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return supabase_user


async def _get_or_create_user(supabase_user: dict, db: AsyncSession) -> User:
    """Find user by supabase_id or create it on first login."""
    supabase_id = supabase_user["id"]
    email = (supabase_user.get("email") or "").lower()
    full_name = (supabase_user.get("user_metadata") or {}).get("full_name", "")

    result = await db.execute(select(User).where(User.supabase_id == supabase_id))
    user = result.scalar_one_or_none()

    now = datetime.datetime.now(datetime.timezone.utc)
    if user:
        user.last_login_at = now
        if email and user.email != email:
            user.email = email
        await db.commit()
        return user

    user = User(
        id=uuid4(),
        supabase_id=supabase_id,
        email=email,
        full_name=full_name,
        last_login_at=now,
    )
    db.add(user)
    await db.commit()
    return user


async def require_user(
    request: Request, db: AsyncSession = Depends(get_db)
) -> AuthContext:
    """FastAPI dependency: extracts Bearer token, validates, returns auth context."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = auth_header[7:]
    supabase_user = await _validate_supabase_token(token)
    user = await _get_or_create_user(supabase_user, db)

    return AuthContext(
        user_id=user.id,
        supabase_id=user.supabase_id,
        email=user.email,
    )
