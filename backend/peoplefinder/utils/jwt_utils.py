"""Session JWT utilities: issue, verify, refresh, extract"""
import time
from typing import Any, Dict, Mapping, NamedTuple, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from peoplefinder.config import settings
from peoplefinder.utils.logger import logger

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for session token failures (surfaced as HTTP 401)"""


class InvalidSignature(TokenError):
    """Token is malformed or its signature does not match"""


class TokenExpired(TokenError):
    """Token signature is valid but ``exp`` is not in the future"""


class RefreshDenied(TokenError):
    """Token cannot be refreshed"""


# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------


class Principal(NamedTuple):
    """Verified identity reconstructed from a session token on each request."""
    email: str
    is_admin: bool
    is_emergency: bool
    issued_at: int
    expires_at: int

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Principal":
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise InvalidSignature("Token is missing the email claim")
        return cls(
            email=email.lower(),
            is_admin=bool(claims.get("isAdmin", False)),
            is_emergency=bool(claims.get("isEmergency", False)),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "isAdmin": self.is_admin,
            "isEmergency": self.is_emergency,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }


# ---------------------------------------------------------------------------
# Token creation
# ---------------------------------------------------------------------------


def issue_token(
    email: str,
    is_admin: bool,
    extra_claims: Optional[Dict[str, Any]] = None,
    expires_in: Optional[int] = None,
    now: Optional[int] = None,
) -> str:
    """Sign and return a session JWT.

    Args:
        email:        Identity of the caller; stored lowercased.
        is_admin:     Admin flag captured at issuance time.
        extra_claims: Additional claims to embed (``isEmergency``).
        expires_in:   Lifetime in seconds; defaults to ``JWT_EXPIRE_SECONDS``.
        now:          Issuance time override (epoch seconds).

    Returns:
        Signed JWT string.
    """
    issued_at = int(time.time()) if now is None else int(now)
    lifetime = settings.JWT_EXPIRE_SECONDS if expires_in is None else int(expires_in)

    payload: Dict[str, Any] = {
        **(extra_claims or {}),
        "email": email.strip().lower(),
        "isAdmin": bool(is_admin),
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def issue_emergency_token(email: str) -> str:
    """Issue a one-hour break-glass token"""
    return issue_token(
        email,
        is_admin=False,
        extra_claims={"isEmergency": True},
        expires_in=settings.JWT_EMERGENCY_EXPIRE_SECONDS,
    )


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


def verify_token(token: str) -> Principal:
    """Verify a session JWT and return the principal it carries.

    Raises:
        InvalidSignature: malformed token, bad signature, or missing claims.
        TokenExpired:     valid signature but ``exp <= now``.
    """
    if not token:
        raise InvalidSignature("No token provided")

    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_iat": True, "require_exp": True},
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired") from exc
    except JWTError as exc:
        logger.debug(f"JWT decode failed: {exc}")
        raise InvalidSignature("Invalid token") from exc

    try:
        principal = Principal.from_claims(claims)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidSignature("Token claims are malformed") from exc

    # jose accepts exp == now; sessions require exp strictly in the future
    if principal.expires_at <= int(time.time()):
        raise TokenExpired("Token has expired")

    return principal


def refresh_token(token: str) -> str:
    """Issue a new token for a currently valid one.

    Email and ``isAdmin`` are carried over and the original lifetime window is
    reused. The new ``exp`` is always strictly later than the old.

    Emergency sessions are not renewable: refreshing one yields an ordinary
    session without ``isEmergency``, so break-glass access still ends when
    the original hour does.

    Raises:
        RefreshDenied: the token does not verify (tampered or expired).
    """
    try:
        principal = verify_token(token)
    except TokenError as exc:
        raise RefreshDenied(f"Token refresh failed: {exc}") from exc

    now = int(time.time())
    if principal.is_emergency:
        lifetime = settings.JWT_EXPIRE_SECONDS
    else:
        lifetime = max(principal.expires_at - principal.issued_at, 1)
    expires_in = max(lifetime, principal.expires_at + 1 - now)

    return issue_token(principal.email, principal.is_admin, expires_in=expires_in, now=now)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_token(headers: Mapping[str, str], cookie_header: Optional[str] = None) -> Optional[str]:
    """Return the bearer token from ``Authorization`` or the session cookie."""
    auth_header = headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token

    if cookie_header:
        for part in cookie_header.split(";"):
            name, sep, value = part.strip().partition("=")
            if sep and name == settings.JWT_COOKIE_NAME and value:
                return value

    return None


def peek_email(token: Optional[str]) -> Optional[str]:
    """Read the email claim WITHOUT verifying the signature (audit labels only)."""
    if not token:
        return None
    try:
        email = jwt.get_unverified_claims(token).get("email")
    except JWTError:
        return None
    return email.lower() if isinstance(email, str) and email else None
