"""Break-glass emergency access.

A recovery path for when Microsoft sign-in or Okta is down: a secret URL
token plus an out-of-band credential pair yields a one-hour emergency
session. Nothing here calls the identity provider or the directory.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from peoplefinder.api.deps import get_audit_writer, set_session_cookie
from peoplefinder.config import settings
from peoplefinder.middleware.monitoring import record_auth_failure, record_login
from peoplefinder.middleware.rate_limit import get_rate_limit, limiter
from peoplefinder.schemas.auth import EmergencyLoginRequest, EmergencyTokenRequest
from peoplefinder.utils.audit import AuditAction, AuditLogWriter
from peoplefinder.utils.auth import normalize_email, verify_break_glass_credentials, verify_emergency_token
from peoplefinder.utils.jwt_utils import issue_emergency_token
from peoplefinder.utils.logger import logger

router = APIRouter(prefix="/api/admin/emergency", tags=["emergency"])


@router.post("/login")
@limiter.limit(get_rate_limit("emergency_login"))
def emergency_login(
    request: Request,
    payload: Optional[EmergencyLoginRequest] = None,
    token: Optional[str] = Query(None),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """
    Break-glass login

    Gates, in order:
    1. URL token must match BREAK_GLASS_URL_TOKEN (body ``token`` or ``?token=``)
    2. ``email``/``password`` must match the break-glass credential pair

    Every failure is audited with its reason regardless of what else was sent.
    """
    payload = payload or EmergencyLoginRequest()
    url_token = payload.token or token
    email = normalize_email(payload.email) or None

    if not verify_emergency_token(url_token):
        record_auth_failure("break_glass")
        audit.record(
            AuditAction.BREAK_GLASS_LOGIN,
            email or "anonymous",
            metadata={"success": False, "reason": "Invalid URL token"},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid access token"},
        )

    if not email or not payload.password:
        audit.record(
            AuditAction.BREAK_GLASS_LOGIN,
            email or "anonymous",
            metadata={"success": False, "reason": "Missing credentials"},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Email and password required"},
        )

    if not verify_break_glass_credentials(email, payload.password):
        record_auth_failure("break_glass")
        audit.record(
            AuditAction.FAILED_LOGIN,
            email,
            metadata={"type": "break_glass", "reason": "Invalid credentials"},
            request=request,
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid credentials"},
        )

    session_token = issue_emergency_token(email)
    audit.record(AuditAction.BREAK_GLASS_LOGIN, email, metadata={"success": True}, request=request)
    record_login("break_glass")
    logger.warning("Break-glass emergency access granted", extra={"email": email, "action": "BREAK_GLASS_LOGIN"})

    response = JSONResponse(content={"success": True, "message": "Emergency access granted"})
    set_session_cookie(response, session_token, max_age=settings.JWT_EMERGENCY_EXPIRE_SECONDS)
    return response


@router.post("/verify-token")
@limiter.limit(get_rate_limit("emergency_verify"))
def verify_token_endpoint(
    request: Request,
    payload: Optional[EmergencyTokenRequest] = None,
    token: Optional[str] = Query(None),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """Pre-check the URL token before the credential form is shown"""
    url_token = (payload.token if payload else None) or token

    if not url_token:
        audit.record(
            AuditAction.BREAK_GLASS_ACCESS,
            "anonymous",
            metadata={"success": False, "reason": "No token provided"},
            request=request,
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Token required"})

    if not verify_emergency_token(url_token):
        record_auth_failure("break_glass")
        audit.record(
            AuditAction.BREAK_GLASS_ACCESS,
            "anonymous",
            metadata={"success": False, "reason": "Invalid token"},
            request=request,
        )
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid token"})

    audit.record(
        AuditAction.BREAK_GLASS_ACCESS,
        "anonymous",
        metadata={"success": True, "stage": "token_verified"},
        request=request,
    )
    return JSONResponse(content={"valid": True})
