"""
Database models.

Design principles:
  - Events are append-only (never updated or deleted by normal flow)
  - Sites are owned by exactly one user; the owner also has a team_members row
  - Invitations leave "pending" once, to "accepted" or "expired"
"""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


TEAM_ROLES = ("owner", "admin", "viewer")
INVITABLE_ROLES = ("admin", "viewer")
MANAGER_ROLES = ("owner", "admin")

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_EXPIRED = "expired"

UNKNOWN = "Unknown"


def _in(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class User(Base):
    """Local mirror of a Supabase identity, created on first login."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supabase_id = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Site(Base):
    __tablename__ = "sites"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    domain = Column(String(253), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    site_id = Column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(10), nullable=False)                # owner, admin, viewer
    invited_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("site_id", "user_id", name="uq_team_members_site_user"),
        CheckConstraint(_in("role", TEAM_ROLES), name="ck_team_members_role"),
    )


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    site_id = Column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)  # stored lower-cased
    role = Column(String(10), nullable=False)                # admin, viewer
    invited_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    token = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(10), nullable=False, default=INVITATION_PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_invitations_site_email_status", "site_id", "email", "status"),
        CheckConstraint(_in("role", INVITABLE_ROLES), name="ck_invitations_role"),
        CheckConstraint(
            _in("status", (INVITATION_PENDING, INVITATION_ACCEPTED, INVITATION_EXPIRED)),
            name="ck_invitations_status",
        ),
    )


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class Event(Base):
    """One row per recorded page view. Written only by /api/track."""
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    site_id = Column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(100), nullable=False)         # client-generated, unvalidated
    page = Column(Text, nullable=False)
    referrer = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # --- Networking ---
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    # --- Geo (ipapi lookup, "Unknown" on failure) ---
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)

    # --- Device (parsed from UA) ---
    device_type = Column(String(100), nullable=True)
    operating_system = Column(String(100), nullable=True)
    browser = Column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_events_site_timestamp", "site_id", "timestamp"),
    )
