from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from storyloom.config import settings
from storyloom.errors import AuthenticationError
from storyloom.main import app
from storyloom.modules.access.deps import authorize_ownership
from storyloom.modules.access.identity import authenticate, create_access_token
from tests.support.auth import admin_bearer, bearer


def test_authenticate_round_trip_claims() -> None:
    token = create_access_token("user-1", email="u1@example.test")
    user = authenticate(f"Bearer {token}")
    assert user == {"id": "user-1", "email": "u1@example.test", "role": "authenticated"}


def test_role_from_app_metadata_wins() -> None:
    token = jwt.encode(
        {"sub": "user-2", "role": "authenticated", "app_metadata": {"role": "admin"}},
        settings.jwt_secret,
        algorithm="HS256",
    )
    assert authenticate(f"Bearer {token}")["role"] == "admin"


@pytest.mark.parametrize("header", [None, "", "Token abc"])
def test_missing_or_malformed_header(header) -> None:
    with pytest.raises(AuthenticationError) as exc_info:
        authenticate(header)
    assert exc_info.value.code == "MISSING_AUTH"


def test_expired_token_is_rejected() -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode(
        {"sub": "user-3", "iat": int(past.timestamp()), "exp": int((past + timedelta(minutes=5)).timestamp())},
        settings.jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(AuthenticationError) as exc_info:
        authenticate(f"Bearer {token}")
    assert exc_info.value.code == "INVALID_TOKEN"


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = jwt.encode({"sub": "user-4"}, "other-secret", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        authenticate(f"Bearer {token}")


def test_authorize_ownership() -> None:
    assert authorize_ownership("owner", {"id": "owner", "role": "authenticated"}) is True
    assert authorize_ownership("owner", {"id": "other", "role": "authenticated"}) is False
    assert authorize_ownership("owner", {"id": "ops", "role": "admin"}) is True


def test_http_missing_token_envelope() -> None:
    client = TestClient(app)
    resp = client.get("/credits/balance")
    assert resp.status_code == 401
    error = resp.json()["error"]
    assert error["code"] == "MISSING_AUTH"
    assert error["timestamp"]


def test_http_invalid_token() -> None:
    client = TestClient(app)
    resp = client.get("/credits/balance", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_TOKEN"


def test_admin_routes_require_admin_role() -> None:
    client = TestClient(app)
    denied = client.get("/admin/migration", headers=bearer("plain-user"))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    allowed = client.get("/admin/migration", headers=admin_bearer())
    assert allowed.status_code == 200
