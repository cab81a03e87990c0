"""Sign-in, token refresh and sign-out endpoints"""
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from peoplefinder.api.deps import (
    clear_session_cookie,
    get_audit_writer,
    get_directory,
    request_token,
    require_auth,
    set_session_cookie,
)
from peoplefinder.config import settings
from peoplefinder.database import get_db
from peoplefinder.middleware.monitoring import record_auth_failure, record_directory_lookup, record_login
from peoplefinder.middleware.rate_limit import get_rate_limit, limiter
from peoplefinder.schemas.auth import OfficeTokenRequest
from peoplefinder.utils.audit import AuditAction, AuditLogWriter
from peoplefinder.utils.auth import is_admin_email
from peoplefinder.utils.easyauth import decode_principal
from peoplefinder.utils.jwt_utils import RefreshDenied, issue_token, peek_email, refresh_token, verify_token
from peoplefinder.utils.logger import logger
from peoplefinder.utils.microsoft import (
    IdentityProviderNotConfigured,
    InvalidOfficeToken,
    TokenExchangeFailed,
    build_authorization_url,
    decode_state,
    encode_state,
    exchange_code,
    validate_office_token,
)
from peoplefinder.utils.okta import DirectoryUnavailable, OktaDirectory, authorize_directory_member

router = APIRouter(prefix="/api/auth", tags=["auth"])

CALLBACK_PATH = "/api/auth/oauth/callback"


def _origin(request: Request) -> str:
    """Public base URL: APP_URL when set, otherwise the request's own origin"""
    return (settings.APP_URL or str(request.base_url)).rstrip("/")


def _redirect_uri(request: Request) -> str:
    return f"{_origin(request)}{CALLBACK_PATH}"


def _error_redirect(request: Request, error: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{_origin(request)}/?error={quote(error, safe='')}",
        status_code=status.HTTP_302_FOUND,
    )


def _lookup_admin(db: Session, email: str) -> bool:
    # A failed admin lookup still lets the user in, just without admin rights
    try:
        return is_admin_email(db, email)
    except SQLAlchemyError:
        logger.error("Admin check failed during sign-in", extra={"email": email}, exc_info=True)
        return False


# ---------------------------------------------------------------------------
# GET /api/auth/oauth
# ---------------------------------------------------------------------------

@router.get("/oauth")
@limiter.limit(get_rate_limit("oauth"))
def start_oauth(request: Request, returnTo: Optional[str] = Query(None)):
    """Redirect the browser to the Microsoft sign-in page.

    ``returnTo`` is carried through the ``state`` parameter and used as the
    post-login destination when it is a relative path on this site.
    """
    try:
        url = build_authorization_url(_redirect_uri(request), encode_state(returnTo))
    except IdentityProviderNotConfigured as exc:
        logger.error(f"OAuth initiation failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to initiate authentication"},
        )
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# ---------------------------------------------------------------------------
# GET /api/auth/oauth/callback
# ---------------------------------------------------------------------------

@router.get("/oauth/callback")
def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
    directory: OktaDirectory = Depends(get_directory),
):
    """Finish the code flow: exchange, gate on the directory, set the session cookie."""
    if error:
        # Provider-side failure; never attempt an exchange
        logger.warning(f"OAuth error returned by identity provider: {error}")
        record_auth_failure("oauth")
        return _error_redirect(request, error)

    if not code:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Authorization code required"},
        )

    return_to = decode_state(state)

    try:
        identity = exchange_code(code, _redirect_uri(request))
    except (TokenExchangeFailed, IdentityProviderNotConfigured) as exc:
        logger.warning(f"OAuth code exchange failed: {exc}")
        record_auth_failure("oauth")
        audit.record(
            AuditAction.AUTH_FAILED,
            "anonymous",
            metadata={"reason": "OAuth code exchange failed", "error": str(exc)},
            request=request,
        )
        return _error_redirect(request, "auth_failed")

    email = identity["email"]

    try:
        lookup = authorize_directory_member(directory, email)
    except DirectoryUnavailable as exc:
        record_directory_lookup("error")
        logger.error(f"Okta user lookup failed: {exc}", extra={"email": email})
        audit.record(
            AuditAction.AUTH_FAILED,
            email,
            metadata={"reason": "Okta lookup failed", "error": str(exc)},
            request=request,
        )
        return _error_redirect(request, "directory_error")

    if not lookup.found:
        record_directory_lookup("not_found")
        record_auth_failure("oauth")
        audit.record(
            AuditAction.AUTH_FAILED,
            email,
            metadata={"reason": "User not found in Okta directory"},
            request=request,
        )
        return _error_redirect(request, "user_not_found")

    record_directory_lookup("found")
    is_admin = _lookup_admin(db, email)
    token = issue_token(email, is_admin)

    audit.record(AuditAction.AUTH_LOGIN, email, metadata={"method": "oauth", "isAdmin": is_admin}, request=request)
    record_login("oauth")
    logger.info("User signed in via OAuth", extra={"email": email})

    response = RedirectResponse(url=f"{_origin(request)}{return_to}", status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, token)
    return response


# ---------------------------------------------------------------------------
# POST /api/auth/exchange-office-token
# ---------------------------------------------------------------------------

@router.post("/exchange-office-token")
@limiter.limit(get_rate_limit("office_exchange"))
def exchange_office_token(
    request: Request,
    payload: OfficeTokenRequest,
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
    directory: OktaDirectory = Depends(get_directory),
):
    """Exchange an Office add-in SSO token for a session JWT.

    Returns ``{jwt, email, isAdmin}``; the add-in keeps the token itself and
    sends it as a bearer header, so no cookie is set.
    """
    if not payload.officeToken:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Office token required"},
        )

    try:
        identity = validate_office_token(payload.officeToken)
    except IdentityProviderNotConfigured as exc:
        logger.error(f"Office SSO is not configured: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Authentication is not configured"},
        )
    except InvalidOfficeToken as exc:
        logger.info(f"Office token validation failed: {exc}")
        record_auth_failure("office_sso")
        audit.record(
            AuditAction.AUTH_FAILED,
            "anonymous",
            metadata={"reason": "Invalid Office token", "error": str(exc)},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid Office token"},
        )

    email = identity["email"]

    try:
        lookup = authorize_directory_member(directory, email)
    except DirectoryUnavailable as exc:
        record_directory_lookup("error")
        logger.error(f"Okta user lookup failed: {exc}", extra={"email": email})
        audit.record(
            AuditAction.AUTH_FAILED,
            email,
            metadata={"reason": "Okta lookup failed", "error": str(exc)},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Directory lookup failed"},
        )

    if not lookup.found:
        record_directory_lookup("not_found")
        record_auth_failure("office_sso")
        audit.record(
            AuditAction.AUTH_FAILED,
            email,
            metadata={"reason": "User not found in Okta directory"},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "User not found in directory"},
        )

    record_directory_lookup("found")
    is_admin = _lookup_admin(db, email)
    token = issue_token(email, is_admin)

    audit.record(AuditAction.AUTH_LOGIN, email, metadata={"method": "office_sso", "isAdmin": is_admin}, request=request)
    record_login("office_sso")

    return JSONResponse(content={"jwt": token, "email": email, "isAdmin": is_admin})


# ---------------------------------------------------------------------------
# POST /api/auth/refresh
# ---------------------------------------------------------------------------

@router.post("/refresh")
def refresh_session(request: Request, audit: AuditLogWriter = Depends(get_audit_writer)):
    """Rotate a still-valid session token.

    The cookie is re-set only when the token arrived in a cookie; bearer
    clients (the add-in) just get the new token in the body.
    """
    token = request_token(request)
    if not token:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "No token provided"},
        )

    try:
        new_token = refresh_token(token)
    except RefreshDenied as exc:
        record_auth_failure("refresh")
        audit.record(
            AuditAction.AUTH_FAILED,
            peek_email(token) or "anonymous",
            metadata={"reason": "Token refresh failed", "error": str(exc)},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Token refresh failed"},
        )

    principal = verify_token(new_token)
    audit.record(AuditAction.AUTH_TOKEN_REFRESH, principal.email, metadata={"success": True}, request=request)

    response = JSONResponse(content={"jwt": new_token})
    if settings.JWT_COOKIE_NAME in request.cookies:
        set_session_cookie(response, new_token, max_age=principal.expires_at - principal.issued_at)
    return response


# ---------------------------------------------------------------------------
# POST /api/auth/logout
# ---------------------------------------------------------------------------

@router.post("/logout")
def logout(request: Request, audit: AuditLogWriter = Depends(get_audit_writer)):
    """Clear the session cookie. Tokens are stateless, so nothing is revoked server side."""
    email = peek_email(request_token(request)) or "anonymous"
    audit.record(AuditAction.AUTH_LOGOUT, email, metadata={"method": "manual"}, request=request)

    response = JSONResponse(content={"success": True, "message": "Logged out successfully"})
    clear_session_cookie(response)
    return response


# ---------------------------------------------------------------------------
# GET /api/auth/me
# ---------------------------------------------------------------------------

@router.get("/me")
def current_user(request: Request, legacy: Optional[str] = Query(None)):
    """Return the caller's session claims, or with ``legacy=1`` the raw Easy Auth principal."""
    if legacy == "1":
        if not request.headers.get("x-ms-client-principal"):
            return {"mode": "easy_auth", "error": "No Easy Auth principal found"}
        principal = decode_principal(request.headers)
        if principal is None:
            return {"mode": "easy_auth", "error": "Failed to decode Easy Auth principal"}
        return {
            "mode": "easy_auth",
            "claims": principal.get("claims"),
            "userId": principal.get("userId"),
            "identityProvider": principal.get("identityProvider"),
        }

    result = require_auth(request)
    if not result.authorized:
        return result.response

    return {"mode": "jwt", **result.user.to_dict()}
