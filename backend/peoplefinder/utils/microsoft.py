"""
Microsoft identity platform client.

Covers the two ways a caller proves who they are to us:
- the browser authorization-code flow (``build_authorization_url`` then
  ``exchange_code``)
- the Office add-in SSO token (``validate_office_token``), verified against
  the tenant's published signing keys
"""
import base64
import binascii
import json
import threading
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from jose import JWTError, jwk, jwt

from peoplefinder.config import settings
from peoplefinder.utils.logger import logger


class TokenExchangeFailed(Exception):
    """Authorization code could not be exchanged for a verified identity"""


class InvalidOfficeToken(Exception):
    """Office SSO token failed signature, expiry or audience checks"""


class IdentityProviderNotConfigured(Exception):
    """Client id/secret are missing"""


DEFAULT_RETURN_TO = "/"

# Claim names that may carry the sign-in address, in preference order
EMAIL_CLAIMS = ("preferred_username", "upn", "email", "unique_name")


# =============================================================================
# Authorization URL and state
# =============================================================================


def _require_client_id() -> str:
    if not settings.AZURE_CLIENT_ID:
        raise IdentityProviderNotConfigured("AZURE_CLIENT_ID is not set")
    return settings.AZURE_CLIENT_ID


def build_authorization_url(redirect_uri: str, state: str) -> str:
    """Authorize endpoint URL for the code flow"""
    params = {
        "client_id": _require_client_id(),
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": settings.OAUTH_SCOPES,
        "state": state,
    }
    return f"{settings.azure_authority}/oauth2/v2.0/authorize?{urlencode(params)}"


def _safe_return_to(value: Any) -> str:
    # Only same-site relative paths; "//host" would be protocol-relative
    if not isinstance(value, str) or not value.startswith("/") or value.startswith("//"):
        return DEFAULT_RETURN_TO
    if "\\" in value:
        return DEFAULT_RETURN_TO
    return value


def encode_state(return_to: Optional[str]) -> str:
    payload = json.dumps({"returnTo": _safe_return_to(return_to)})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(state: Optional[str]) -> str:
    """Recover ``returnTo`` from the state parameter, falling back to ``/``"""
    if not state:
        return DEFAULT_RETURN_TO
    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        logger.warning("Malformed OAuth state parameter, using default return path")
        return DEFAULT_RETURN_TO
    if not isinstance(data, dict):
        return DEFAULT_RETURN_TO
    return _safe_return_to(data.get("returnTo"))


# =============================================================================
# Code exchange
# =============================================================================


def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    for name in EMAIL_CLAIMS:
        value = claims.get(name)
        if isinstance(value, str) and "@" in value:
            return value.strip().lower()
    return None


def exchange_code(code: str, redirect_uri: str) -> Dict[str, Any]:
    """
    Exchange an authorization code at the token endpoint.

    The id_token comes straight back from the token endpoint over TLS, so its
    claims are read without re-verifying the signature.

    Returns:
        ``{"email", "tenant_id", "name", "access_token"}``

    Raises:
        TokenExchangeFailed: on transport errors, non-2xx responses, or a
            response without a usable id_token.
    """
    client_id = _require_client_id()
    if not settings.AZURE_CLIENT_SECRET:
        raise IdentityProviderNotConfigured("AZURE_CLIENT_SECRET is not set")

    token_url = f"{settings.azure_authority}/oauth2/v2.0/token"
    try:
        response = requests.post(
            token_url,
            data={
                "client_id": client_id,
                "client_secret": settings.AZURE_CLIENT_SECRET,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
                "scope": settings.OAUTH_SCOPES,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise TokenExchangeFailed(f"Token endpoint unreachable: {exc}") from exc

    if response.status_code >= 400:
        logger.warning(
            "Token exchange rejected by identity provider",
            extra={"status_code": response.status_code},
        )
        raise TokenExchangeFailed(f"Token endpoint returned {response.status_code}")

    try:
        tokens = response.json()
    except ValueError as exc:
        raise TokenExchangeFailed("Token endpoint returned invalid JSON") from exc

    id_token = tokens.get("id_token")
    if not id_token:
        raise TokenExchangeFailed("No id_token in token response")

    try:
        claims = jwt.get_unverified_claims(id_token)
    except JWTError as exc:
        raise TokenExchangeFailed("id_token could not be decoded") from exc

    email = extract_email_from_claims(claims)
    if not email:
        raise TokenExchangeFailed("No email claim in id_token")

    return {
        "email": email,
        "tenant_id": claims.get("tid"),
        "name": claims.get("name"),
        "access_token": tokens.get("access_token"),
    }


# =============================================================================
# JWKS cache and Office SSO validation
# =============================================================================

_jwks_lock = threading.Lock()
_jwks_cache: Optional[Dict[str, Any]] = None
_jwks_cache_time: float = 0.0


def fetch_jwks(force_refresh: bool = False) -> Dict[str, Any]:
    """
    Fetch the tenant's signing keys, cached for ``JWKS_CACHE_SECONDS``.

    Raises:
        requests.RequestException: if the keys endpoint is unreachable
        ValueError: if the response has no ``keys``
    """
    global _jwks_cache, _jwks_cache_time

    with _jwks_lock:
        now = time.monotonic()
        if not force_refresh and _jwks_cache and (now - _jwks_cache_time) < settings.JWKS_CACHE_SECONDS:
            return _jwks_cache

        jwks_uri = f"{settings.azure_authority}/discovery/v2.0/keys"
        response = requests.get(jwks_uri, timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
        if "keys" not in data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        _jwks_cache = data
        _jwks_cache_time = now
        return data


def clear_jwks_cache() -> None:
    global _jwks_cache, _jwks_cache_time
    with _jwks_lock:
        _jwks_cache = None
        _jwks_cache_time = 0.0


def _find_key(kid: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _accepted_audiences() -> set:
    audiences = set()
    if settings.AZURE_CLIENT_ID:
        audiences.add(settings.AZURE_CLIENT_ID)
        audiences.add(f"api://{settings.AZURE_CLIENT_ID}")
    if settings.OFFICE_SSO_AUDIENCE:
        audiences.add(settings.OFFICE_SSO_AUDIENCE)
    return audiences


def validate_office_token(token: str) -> Dict[str, Any]:
    """
    Verify an Office SSO access token and return the identity it carries.

    Returns:
        ``{"email", "tenant_id", "name"}``

    Raises:
        InvalidOfficeToken: bad header, unknown key, bad signature, expired,
            wrong audience or no email claim.
    """
    audiences = _accepted_audiences()
    if not audiences:
        raise IdentityProviderNotConfigured("No audience configured for Office SSO tokens")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError as exc:
        raise InvalidOfficeToken("Malformed token header") from exc
    if not kid:
        raise InvalidOfficeToken("Token header missing 'kid'")

    try:
        signing_key = _find_key(kid, fetch_jwks())
        if signing_key is None:
            # Keys may have rotated since the last fetch
            signing_key = _find_key(kid, fetch_jwks(force_refresh=True))
    except (requests.RequestException, ValueError) as exc:
        logger.error(f"Could not fetch signing keys: {exc}")
        raise InvalidOfficeToken("Signing keys unavailable") from exc

    if signing_key is None:
        raise InvalidOfficeToken("No signing key matches the token's kid")

    try:
        public_key = jwk.construct(signing_key, algorithm="RS256").to_pem().decode("utf-8")
        claims = jwt.decode(
            token,
            public_key,
            algorithms=["RS256"],
            options={"verify_aud": False, "verify_at_hash": False, "require_exp": True, "leeway": 10},
        )
    except JWTError as exc:
        raise InvalidOfficeToken(f"Token verification failed: {exc}") from exc

    token_audience = claims.get("aud")
    token_audiences = token_audience if isinstance(token_audience, list) else [token_audience]
    if not audiences.intersection(token_audiences):
        raise InvalidOfficeToken("Token audience does not match this application")

    email = extract_email_from_claims(claims)
    if not email:
        raise InvalidOfficeToken("No email claim in token")

    return {"email": email, "tenant_id": claims.get("tid"), "name": claims.get("name")}


# =============================================================================
# Connectivity check
# =============================================================================


def check_identity_provider() -> Dict[str, Any]:
    """Fetch the OpenID discovery document; never raises"""
    url = f"{settings.azure_authority}/v2.0/.well-known/openid-configuration"
    started = time.monotonic()
    try:
        response = requests.get(url, timeout=settings.IDP_TEST_TIMEOUT_SECONDS)
        ok = response.status_code == 200
        detail = None if ok else f"HTTP {response.status_code}"
    except requests.RequestException as exc:
        ok, detail = False, str(exc)
    result = {"ok": ok, "latency_ms": int((time.monotonic() - started) * 1000)}
    if detail:
        result["error"] = detail
    return result
