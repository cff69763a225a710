"""Pytest configuration."""

import os

# Ensure test environment
os.environ.setdefault("SP_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SP_DEBUG", "true")
os.environ.setdefault("SP_SUPABASE_URL", "https://auth.test.invalid")
os.environ.setdefault("SP_BASE_URL", "https://sitepulse.test")

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest


def make_result(scalar=None, rows=None, scalars=None, one=None):
    """A stand-in for an AsyncSession.execute() result."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.one_or_none.return_value = one
    result.all.return_value = rows or []
    result.scalars.return_value.all.return_value = scalars or []
    return result


def make_db(results=None):
    """Mock AsyncSession whose execute() returns ``results`` in order."""
    db = AsyncMock(spec=["execute", "add", "commit", "rollback", "refresh", "delete", "flush"])
    if results is not None:
        db.execute = AsyncMock(side_effect=list(results))
    else:
        db.execute = AsyncMock(return_value=make_result())
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.delete = AsyncMock()
    return db


@pytest.fixture
def user():
    from sitepulse.middleware.supabase_auth import AuthContext

    return AuthContext(user_id=uuid4(), supabase_id="sb-user-1", email="owner@example.com")


@pytest.fixture
def make_client(user):
    """Build a TestClient over the given routers with auth + db overridden."""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from sitepulse.api.errors import install_error_handlers
    from sitepulse.middleware.supabase_auth import require_user
    from sitepulse.models.database import get_db

    def _make(*routers, db=None, auth=True):
        app = FastAPI()
        install_error_handlers(app)
        for router in routers:
            app.include_router(router)
        if db is not None:
            app.dependency_overrides[get_db] = lambda: db
        if auth:
            app.dependency_overrides[require_user] = lambda: user
        return TestClient(app, raise_server_exceptions=False)

    return _make
