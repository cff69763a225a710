"""Tests for Supabase bearer-token validation."""

from unittest.mock import patch

import httpx
import pytest
from fastapi import HTTPException

from conftest import make_db, make_result
from sitepulse.middleware import supabase_auth

RealAsyncClient = httpx.AsyncClient


def _supabase(handler):
    """Route the module's httpx client through a MockTransport."""
    transport = httpx.MockTransport(handler)
    return patch.object(
        supabase_auth.httpx, "AsyncClient", lambda **kwargs: RealAsyncClient(transport=transport)
    )


class TestValidateToken:
    async def test_valid_user_returned(self):
        with _supabase(lambda req: httpx.Response(200, json={"id": "sb-1", "email": "A@Example.com"})):
            user = await supabase_auth._validate_supabase_token("tok")
        assert user["id"] == "sb-1"

    @pytest.mark.parametrize("response", [
        httpx.Response(200, content=b"<html>not json</html>"),
        httpx.Response(200, json={"email": "a@example.com"}),
        httpx.Response(200, json=["sb-1"]),
        httpx.Response(403, json={"msg": "invalid JWT"}),
    ])
    async def test_unusable_response_is_401(self, response):
        with _supabase(lambda req: response):
            with pytest.raises(HTTPException) as exc_info:
                await supabase_auth._validate_supabase_token("tok")
        assert exc_info.value.status_code == 401

    async def test_network_failure_is_401(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _supabase(handler):
            with pytest.raises(HTTPException) as exc_info:
                await supabase_auth._validate_supabase_token("tok")
        assert exc_info.value.status_code == 401


class TestRequireUser:
    @pytest.fixture(autouse=True)
    def _setup(self, make_client):
        from sitepulse.api.sites import router

        self.client = make_client(router, db=make_db([make_result(rows=[])]), auth=False)

    def test_missing_id_in_supabase_response_is_401(self):
        with _supabase(lambda req: httpx.Response(200, json={"email": "a@example.com"})):
            resp = self.client.get("/api/sites", headers={"Authorization": "Bearer tok"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_missing_bearer_is_401(self):
        resp = self.client.get("/api/sites")
        assert resp.status_code == 401
