"""
Security Test Suite - JWT Authentication and operator secrets

Tests that the centralized JWT verification in dependencies.py correctly:
- Rejects missing Authorization headers
- Rejects malformed, expired and wrongly signed tokens
- Rejects tokens whose subject is not a user UUID
- Accepts properly signed tokens (HS256 fallback, JWKS mocked away)

and that the admin and cron headers are compared against settings.
"""

import time
from unittest.mock import patch

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from entitlements.api.dependencies import (
    AuthenticatedUser,
    get_current_user,
    verify_admin_api_key,
    verify_cron_secret,
)
from entitlements.config.settings import get_settings


# ---------------------------------------------------------------------------
# Minimal app that uses the real dependencies
# ---------------------------------------------------------------------------

test_app = FastAPI()


@test_app.get("/protected")
async def protected_endpoint(user: AuthenticatedUser = Depends(get_current_user)):
    return {"user_id": str(user.id), "email": user.email}


@test_app.get("/admin", dependencies=[Depends(verify_admin_api_key)])
async def admin_endpoint():
    return {"ok": True}


@test_app.get("/cron", dependencies=[Depends(verify_cron_secret)])
async def cron_endpoint():
    return {"ok": True}


client = TestClient(test_app, raise_server_exceptions=False)

USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


@pytest.fixture(autouse=True)
def no_jwks():
    """No network: JWKS lookups fail so the HS256 fallback decides."""
    with patch(
        "entitlements.api.dependencies._decode_with_jwks",
        side_effect=jwt.exceptions.PyJWKClientError("no jwks in tests"),
    ):
        yield


def make_token(secret=None, **overrides) -> str:
    settings = get_settings()
    payload = {
        "sub": USER_ID,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + 3600,
        "email": "rider@example.com",
    }
    payload.update(overrides)
    return jwt.encode(payload, secret or settings.supabase_jwt_secret, algorithm="HS256")


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


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
        resp = client.get("/protected", headers=auth("not.a.jwt"))
        assert resp.status_code == 401

    def test_wrong_secret(self):
        token = make_token(secret="another-secret-that-is-also-32-bytes-long")
        resp = client.get("/protected", headers=auth(token))
        assert resp.status_code == 401

    def test_expired_token(self):
        resp = client.get("/protected", headers=auth(make_token(exp=int(time.time()) - 60)))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired"

    def test_wrong_audience(self):
        resp = client.get("/protected", headers=auth(make_token(aud="anon")))
        assert resp.status_code == 401

    def test_non_uuid_subject(self):
        resp = client.get("/protected", headers=auth(make_token(sub="user-123")))
        assert resp.status_code == 401

    def test_raw_uuid_rejected(self):
        """'Bearer <raw-uuid>' is not a credential."""
        resp = client.get("/protected", headers=auth(USER_ID))
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Tests: acceptance scenarios
# ---------------------------------------------------------------------------


class TestJWTAcceptance:

    def test_valid_hs256_token(self):
        resp = client.get("/protected", headers=auth(make_token()))
        assert resp.status_code == 200
        assert resp.json() == {"user_id": USER_ID, "email": "rider@example.com"}

    def test_jwks_result_is_used_when_available(self):
        claims = {"sub": USER_ID, "email": None}
        with patch("entitlements.api.dependencies._decode_with_jwks", return_value=claims):
            resp = client.get("/protected", headers=auth("anything"))
        assert resp.status_code == 200
        assert resp.json()["user_id"] == USER_ID


# ---------------------------------------------------------------------------
# Tests: operator secrets
# ---------------------------------------------------------------------------


class TestOperatorSecrets:

    def test_admin_key_required(self):
        assert client.get("/admin").status_code == 422

    def test_admin_key_mismatch(self):
        assert client.get("/admin", headers={"X-Admin-Key": "nope"}).status_code == 403

    def test_admin_key_match(self):
        resp = client.get("/admin", headers={"X-Admin-Key": "test-admin-key"})
        assert resp.status_code == 200

    def test_cron_secret_match(self):
        resp = client.get("/cron", headers={"X-Cron-Secret": "test-cron-secret"})
        assert resp.status_code == 200

    def test_cron_secret_mismatch(self):
        assert client.get("/cron", headers={"X-Cron-Secret": "nope"}).status_code == 403

    def test_unconfigured_secret_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "cron_secret", None)
        resp = client.get("/cron", headers={"X-Cron-Secret": "anything"})
        assert resp.status_code == 503
