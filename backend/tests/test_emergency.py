"""Tests for break-glass emergency access"""
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from peoplefinder.utils.auth import verify_break_glass_credentials, verify_emergency_token
from peoplefinder.utils.jwt_utils import issue_token, verify_token

URL_TOKEN = "url-token-123"
EMAIL = "breakglass@example.com"
PASSWORD = "correct horse battery staple"


def _login(client: TestClient, **body):
    return client.post("/api/admin/emergency/login", json=body)


def test_successful_login_issues_one_hour_emergency_session(client: TestClient, audit_rows):
    response = _login(client, email=EMAIL, password=PASSWORD, token=URL_TOKEN)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Emergency access granted"}

    cookie = response.headers["set-cookie"]
    assert "Max-Age=3600" in cookie
    assert "HttpOnly" in cookie
    principal = verify_token(cookie.split(";")[0].split("=", 1)[1])
    assert principal.email == EMAIL
    assert principal.is_emergency is True
    assert principal.expires_at - principal.issued_at == 3600

    rows = audit_rows("BREAK_GLASS_LOGIN")
    assert len(rows) == 1
    assert rows[0].log_metadata == {"success": True}


def test_token_may_come_from_query_string(client: TestClient):
    response = client.post(
        "/api/admin/emergency/login",
        params={"token": URL_TOKEN},
        json={"email": EMAIL, "password": PASSWORD},
    )
    assert response.status_code == 200


def test_email_match_is_case_insensitive(client: TestClient):
    response = _login(client, email=EMAIL.upper(), password=PASSWORD, token=URL_TOKEN)
    assert response.status_code == 200


@pytest.mark.parametrize("email,password", [
    (EMAIL, PASSWORD),
    (EMAIL, "wrong"),
    (None, None),
])
def test_bad_url_token_fails_regardless_of_credentials(client: TestClient, audit_rows, email, password):
    """The URL token gate runs first and reports its own reason"""
    response = _login(client, email=email, password=password, token="wrong-token")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid access token"}
    assert "set-cookie" not in response.headers

    rows = audit_rows("BREAK_GLASS_LOGIN")
    assert len(rows) == 1
    assert rows[0].log_metadata == {"success": False, "reason": "Invalid URL token"}
    assert audit_rows("FAILED_LOGIN") == []


def test_missing_url_token_fails(client: TestClient):
    response = _login(client, email=EMAIL, password=PASSWORD)
    assert response.status_code == 401


def test_missing_credentials_after_good_token(client: TestClient, audit_rows):
    response = _login(client, email=EMAIL, token=URL_TOKEN)

    assert response.status_code == 400
    assert audit_rows("BREAK_GLASS_LOGIN")[0].log_metadata == {"success": False, "reason": "Missing credentials"}


@pytest.mark.parametrize("email,password", [
    (EMAIL, "wrong password"),
    ("someone@example.com", PASSWORD),
])
def test_bad_credentials_fail_with_failed_login(client: TestClient, audit_rows, email, password):
    response = _login(client, email=email, password=password, token=URL_TOKEN)

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}
    assert "set-cookie" not in response.headers

    rows = audit_rows("FAILED_LOGIN")
    assert len(rows) == 1
    assert rows[0].admin_email == email
    assert rows[0].log_metadata == {"type": "break_glass", "reason": "Invalid credentials"}


def test_login_never_touches_the_directory(client: TestClient, directory):
    directory.unavailable = True

    response = _login(client, email=EMAIL, password=PASSWORD, token=URL_TOKEN)

    assert response.status_code == 200
    assert directory.calls == []


def test_emergency_session_reaches_admin_routes(client: TestClient):
    """Emergency sessions are admin sessions without any Admin row"""
    _login(client, email=EMAIL, password=PASSWORD, token=URL_TOKEN)

    response = client.get("/api/admin/users")

    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_refreshed_emergency_session_loses_admin_access(client: TestClient):
    """Refreshing before the hour is up does not keep break-glass access alive"""
    nearly_expired = issue_token(
        EMAIL,
        False,
        extra_claims={"isEmergency": True},
        expires_in=3600,
        now=int(time.time()) - 3540,
    )
    assert client.get("/api/admin/users", headers={"Authorization": f"Bearer {nearly_expired}"}).status_code == 200

    response = client.post("/api/auth/refresh", headers={"Authorization": f"Bearer {nearly_expired}"})
    assert response.status_code == 200
    refreshed = response.json()["jwt"]
    assert verify_token(refreshed).is_emergency is False

    response = client.get("/api/admin/users", headers={"Authorization": f"Bearer {refreshed}"})
    assert response.status_code == 403


def test_verify_token_endpoint(client: TestClient, audit_rows):
    assert client.post("/api/admin/emergency/verify-token", json={}).status_code == 400
    assert client.post("/api/admin/emergency/verify-token", json={"token": "nope"}).status_code == 401

    response = client.post("/api/admin/emergency/verify-token", json={"token": URL_TOKEN})
    assert response.status_code == 200
    assert response.json() == {"valid": True}

    reasons = [row.log_metadata.get("reason") for row in audit_rows("BREAK_GLASS_ACCESS")]
    assert sorted(r for r in reasons if r) == ["Invalid token", "No token provided"]


def test_secret_checks_use_constant_time_compare():
    with patch("peoplefinder.utils.auth.hmac.compare_digest", return_value=True) as compare:
        assert verify_emergency_token("anything") is True
    compare.assert_called_once()


def test_unconfigured_secrets_never_match():
    with patch("peoplefinder.utils.auth.settings") as fake_settings:
        fake_settings.BREAK_GLASS_URL_TOKEN = None
        fake_settings.BREAK_GLASS_EMAIL = None
        fake_settings.BREAK_GLASS_PASSWORD = None

        assert verify_emergency_token("") is False
        assert verify_emergency_token(None) is False
        assert verify_break_glass_credentials("", "") is False
