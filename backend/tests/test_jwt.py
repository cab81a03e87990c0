"""Tests for session token issuance, verification and refresh"""
import base64
import json
import time

import pytest
from jose import jwt

from peoplefinder.config import settings
from peoplefinder.utils.jwt_utils import (
    InvalidSignature,
    RefreshDenied,
    TokenExpired,
    extract_token,
    issue_emergency_token,
    issue_token,
    peek_email,
    refresh_token,
    verify_token,
)


def _tamper_payload(token: str, **changes) -> str:
    header, payload, signature = token.split(".")
    padded = payload + "=" * (-len(payload) % 4)
    claims = json.loads(base64.urlsafe_b64decode(padded))
    claims.update(changes)
    new_payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"{header}.{new_payload}.{signature}"


@pytest.mark.parametrize("email,is_admin", [
    ("alice@example.com", False),
    ("Bob.Admin@Example.com", True),
])
def test_issue_then_verify_round_trips_identity(email: str, is_admin: bool):
    """A freshly issued token verifies with the same identity"""
    principal = verify_token(issue_token(email, is_admin))

    assert principal.email == email.lower()
    assert principal.is_admin is is_admin
    assert principal.is_emergency is False
    assert principal.expires_at > time.time()
    assert principal.expires_at - principal.issued_at == settings.JWT_EXPIRE_SECONDS


def test_expired_token_fails_with_expired():
    """A correctly signed token past exp is rejected as expired"""
    token = issue_token("alice@example.com", False, expires_in=60, now=int(time.time()) - 3600)

    with pytest.raises(TokenExpired):
        verify_token(token)


def test_tampered_payload_fails_with_invalid_signature():
    """Changing any claim breaks the signature"""
    token = _tamper_payload(issue_token("alice@example.com", False), isAdmin=True)

    with pytest.raises(InvalidSignature):
        verify_token(token)


def test_wrong_secret_fails_with_invalid_signature():
    """A token signed with another secret is rejected"""
    now = int(time.time())
    token = jwt.encode(
        {"email": "alice@example.com", "isAdmin": True, "iat": now, "exp": now + 60},
        "some-other-secret",
        algorithm="HS256",
    )

    with pytest.raises(InvalidSignature):
        verify_token(token)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
def test_garbage_fails_with_invalid_signature(token: str):
    with pytest.raises(InvalidSignature):
        verify_token(token)


def test_token_without_email_is_rejected():
    """Tokens must carry an email claim"""
    now = int(time.time())
    token = jwt.encode({"isAdmin": True, "iat": now, "exp": now + 60}, settings.JWT_SECRET, algorithm="HS256")

    with pytest.raises(InvalidSignature):
        verify_token(token)


def test_refresh_keeps_identity_and_extends_expiry():
    """Refreshing a valid token yields identical identity and a strictly later exp"""
    old = issue_token("alice@example.com", True, now=int(time.time()) - 100)
    old_principal = verify_token(old)

    new_principal = verify_token(refresh_token(old))

    assert new_principal.email == old_principal.email
    assert new_principal.is_admin == old_principal.is_admin
    assert new_principal.is_emergency == old_principal.is_emergency
    assert new_principal.expires_at > old_principal.expires_at


def test_refresh_of_just_issued_token_still_extends_expiry():
    """Refreshing within the same second still moves exp forward"""
    old = issue_token("alice@example.com", False)

    assert verify_token(refresh_token(old)).expires_at > verify_token(old).expires_at


def test_refresh_does_not_extend_emergency_access():
    """A nearly expired break-glass token refreshes into an ordinary session"""
    nearly_expired = issue_token(
        "breakglass@example.com",
        False,
        extra_claims={"isEmergency": True},
        expires_in=settings.JWT_EMERGENCY_EXPIRE_SECONDS,
        now=int(time.time()) - settings.JWT_EMERGENCY_EXPIRE_SECONDS + 60,
    )
    original = verify_token(nearly_expired)

    refreshed = verify_token(refresh_token(nearly_expired))

    assert refreshed.email == original.email
    assert refreshed.is_admin is False
    assert refreshed.is_emergency is False
    assert refreshed.expires_at > original.expires_at


def test_refresh_of_fresh_emergency_token_drops_the_flag():
    refreshed = verify_token(refresh_token(issue_emergency_token("breakglass@example.com")))

    assert refreshed.is_emergency is False


def test_refresh_of_expired_token_is_denied():
    token = issue_token("alice@example.com", False, expires_in=60, now=int(time.time()) - 3600)

    with pytest.raises(RefreshDenied):
        refresh_token(token)


def test_refresh_of_tampered_token_is_denied():
    token = _tamper_payload(issue_token("alice@example.com", False), email="mallory@example.com")

    with pytest.raises(RefreshDenied):
        refresh_token(token)


def test_extract_prefers_bearer_over_cookie():
    headers = {"authorization": "Bearer header-token"}

    assert extract_token(headers, "jwt=cookie-token") == "header-token"


def test_extract_falls_back_to_jwt_cookie():
    assert extract_token({}, "theme=dark; jwt=cookie-token; other=1") == "cookie-token"


def test_extract_ignores_other_schemes_and_cookies():
    assert extract_token({"authorization": "Basic abc"}, "jwt_other=x; notjwt=y") is None
    assert extract_token({}, None) is None


def test_peek_email_reads_without_verifying():
    """Used only for audit labels: tampered tokens still yield their claimed email"""
    token = _tamper_payload(issue_token("alice@example.com", False), email="Mallory@Example.com")

    assert peek_email(token) == "mallory@example.com"
    assert peek_email("garbage") is None
    assert peek_email(None) is None
