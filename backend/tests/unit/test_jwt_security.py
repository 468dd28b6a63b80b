"""
Security Test Suite - JWT Authentication and Billing Authorization

Tests that the centralized verification in dependencies.py correctly:
- Rejects missing, malformed, expired and wrongly signed tokens
- Accepts properly signed HS256 tokens
- Restricts admin routes to platform admins
- Restricts checkout to company members and admins
"""

import time
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from app.api.dependencies import ensure_company_access, get_current_user_id, require_admin
from app.config.settings import get_settings
from app.infrastructure.db.repositories import UserAccessRepository, get_user_access_repository
from app.infrastructure.exceptions import PermissionDeniedError


# ---------------------------------------------------------------------------
# Minimal app that uses the real dependency
# ---------------------------------------------------------------------------

test_app = FastAPI()


@test_app.get("/protected")
async def protected_endpoint(user_id: str = Depends(get_current_user_id)):
    return {"user_id": user_id}


@test_app.get("/admin-only")
async def admin_endpoint(user_id: str = Depends(require_admin)):
    return {"admin": user_id}


client = TestClient(test_app, raise_server_exceptions=False)

USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def _token(exp_offset: int = 3600, secret: str = None, sub: str = USER_ID) -> str:
    settings = get_settings()
    payload = {
        "sub": sub,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + exp_offset,
    }
    return jwt.encode(payload, secret or settings.supabase_jwt_secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Tests: rejection scenarios
# ---------------------------------------------------------------------------


class TestJWTRejection:
    """Verify that invalid/missing JWTs are rejected with 401."""

    def test_no_auth_header(self):
        resp = client.get("/protected")
        assert resp.status_code == 401

    def test_malformed_scheme(self):
        resp = client.get("/protected", headers={"Authorization": "Basic abc123"})
        assert resp.status_code == 401

    def test_garbage_token(self):
        resp = client.get("/protected", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    def test_wrong_secret(self):
        token = _token(secret="another-secret-that-is-at-least-32-bytes")
        resp = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_expired_token_hs256(self):
        """An expired HS256 token (even with correct secret) must be rejected."""
        resp = client.get("/protected", headers={"Authorization": f"Bearer {_token(exp_offset=-60)}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired"

    def test_raw_uuid_rejected(self):
        resp = client.get("/protected", headers={"Authorization": f"Bearer {USER_ID}"})
        assert resp.status_code == 401


class TestJWTAcceptance:
    """Verify that valid JWTs are accepted."""

    def test_valid_hs256_token(self):
        resp = client.get("/protected", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == USER_ID


# ---------------------------------------------------------------------------
# Tests: authorization
# ---------------------------------------------------------------------------


class TestRequireAdmin:

    @pytest.fixture(autouse=True)
    def access(self):
        repo = AsyncMock(spec=UserAccessRepository)
        test_app.dependency_overrides[get_user_access_repository] = lambda: repo
        yield repo
        test_app.dependency_overrides.clear()

    def test_non_admin_is_forbidden(self, access):
        access.is_admin.return_value = False
        resp = client.get("/admin-only", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.status_code == 403

    def test_admin_passes(self, access):
        access.is_admin.return_value = True
        resp = client.get("/admin-only", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.status_code == 200
        access.is_admin.assert_awaited_once_with(USER_ID)

    def test_anonymous_is_unauthorized(self, access):
        assert client.get("/admin-only").status_code == 401
        access.is_admin.assert_not_awaited()


class TestCompanyAccess:

    @pytest.mark.asyncio
    async def test_member_is_allowed(self, mock_access_repo):
        await ensure_company_access(USER_ID, "c1", mock_access_repo)
        mock_access_repo.is_admin.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_is_allowed_anywhere(self, mock_access_repo):
        mock_access_repo.belongs_to_company.return_value = False
        mock_access_repo.is_admin.return_value = True

        await ensure_company_access(USER_ID, "c1", mock_access_repo)

    @pytest.mark.asyncio
    async def test_outsider_is_denied(self, mock_access_repo):
        mock_access_repo.belongs_to_company.return_value = False

        with pytest.raises(PermissionDeniedError):
            await ensure_company_access(USER_ID, "c1", mock_access_repo)
