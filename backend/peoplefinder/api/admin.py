"""Admin account management and audit endpoints"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from peoplefinder.api.deps import (
    clear_session_cookie,
    get_audit_writer,
    request_token,
    set_session_cookie,
    with_admin_auth,
)
from peoplefinder.database import get_db
from peoplefinder.middleware.monitoring import record_login
from peoplefinder.models.admin import Admin
from peoplefinder.schemas.admin import AdminCreate, AdminResponse
from peoplefinder.schemas.audit_log import AuditLogResponse
from peoplefinder.utils.audit import AuditAction, AuditLogWriter, audit_stats, recent_logs
from peoplefinder.utils.auth import get_admin_by_email, is_admin_email, normalize_email
from peoplefinder.utils.easyauth import parse_principal
from peoplefinder.utils.jwt_utils import Principal, TokenError, issue_token, verify_token
from peoplefinder.utils.logger import logger

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"ok": False, "error": message})


# ---------------------------------------------------------------------------
# Admin users
# ---------------------------------------------------------------------------

@router.get("/users")
@with_admin_auth
def list_admins(
    request: Request,
    session: Principal,
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """List all admins, newest first."""
    admins = db.query(Admin).order_by(Admin.created_at.desc()).all()
    data = [AdminResponse.model_validate(a).model_dump(by_alias=True, mode="json") for a in admins]

    audit.record(AuditAction.VIEW_ADMINS, session.email, metadata={"count": len(data)}, request=request)

    return JSONResponse(content={
        "ok": True,
        "data": data,
        "meta": {"count": len(data), "timestamp": _timestamp()},
    })


@router.post("/users")
@with_admin_auth
def create_admin(
    request: Request,
    session: Principal,
    body: Optional[Dict[str, Any]] = Body(None),
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """
    Grant admin access to an email address.

    Returns 201 when the admin was created and 200 when it already existed.
    """
    if not body or not body.get("email"):
        return _bad_request("Email is required")

    try:
        data = AdminCreate.model_validate(body)
    except ValidationError:
        return _bad_request("Invalid email format")

    added = False
    if get_admin_by_email(db, data.email) is None:
        admin = Admin(
            email=data.email,
            username=data.username or data.email.split("@")[0],
            created_by=session.email,
        )
        db.add(admin)
        try:
            db.commit()
            added = True
        except IntegrityError:
            # Created concurrently by another request
            db.rollback()

    if added:
        audit.record(
            AuditAction.CREATE_ADMIN,
            session.email,
            target_email=data.email,
            metadata={"username": admin.username},
            request=request,
        )
        logger.info(f"Admin added: {data.email}", extra={"email": session.email, "action": "CREATE_ADMIN"})

    return JSONResponse(
        status_code=status.HTTP_201_CREATED if added else status.HTTP_200_OK,
        content={
            "ok": True,
            "data": {
                "email": data.email,
                "added": added,
                "message": "Admin added successfully" if added else "Admin already exists",
            },
        },
    )


@router.delete("/users/{admin_id}")
@with_admin_auth
def delete_admin(
    request: Request,
    session: Principal,
    admin_id: str,
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """Remove an admin. Admins cannot remove themselves."""
    try:
        uuid.UUID(admin_id)
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid admin id"})

    admin = db.query(Admin).filter(Admin.id == admin_id).first()
    if not admin:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Admin not found"})

    if normalize_email(admin.email) == normalize_email(session.email):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Cannot delete your own admin account"},
        )

    target_email = admin.email
    db.delete(admin)
    db.commit()

    audit.record(AuditAction.DELETE_ADMIN, session.email, target_email=target_email, request=request)
    logger.info(f"Admin removed: {target_email}", extra={"email": session.email, "action": "DELETE_ADMIN"})

    return JSONResponse(content={"success": True})


# ---------------------------------------------------------------------------
# Admin check (UI gating)
# ---------------------------------------------------------------------------

@router.get("/check")
def check_admin(request: Request, db: Session = Depends(get_db)):
    """Report whether the caller is an admin, for showing or hiding admin UI."""
    email = parse_principal(request.headers)
    if not email:
        token = request_token(request)
        if token:
            try:
                email = verify_token(token).email
            except TokenError:
                email = None

    if not email:
        return {"ok": True, "data": {"isAdmin": False, "email": None}}

    return {"ok": True, "data": {"isAdmin": is_admin_email(db, email), "email": email}}


# ---------------------------------------------------------------------------
# Admin session
# ---------------------------------------------------------------------------

def _issue_admin_cookie(request: Request, audit: AuditLogWriter, email: str, mode: str) -> JSONResponse:
    token = issue_token(email, True)
    session = verify_token(token)
    audit.record(AuditAction.AUTH_LOGIN, email, metadata={"method": mode, "isAdmin": True}, request=request)
    record_login(mode)

    response = JSONResponse(content={
        "authenticated": True,
        "mode": mode,
        "email": session.email,
        "session": session.to_dict(),
    })
    set_session_cookie(response, token)
    return response


@router.get("/session")
def admin_session(
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """
    Resolve the caller's admin session for the admin UI.

    Modes, in order:
    - ``cookie``: the request already carries an admin or emergency session
    - ``jwt``: a valid session token whose email is now in the admins table;
      an admin session cookie is issued
    - ``aad-bootstrap``: an Easy Auth principal in the admins table; an admin
      session cookie is issued

    Otherwise ``{authenticated: false, reason}`` with reason ``no-aad`` or
    ``not-admin``. Unlike the admin guard this never audits a denial, since the
    UI calls it on every page load.
    """
    token = request_token(request)
    if token:
        try:
            current = verify_token(token)
        except TokenError:
            current = None

        if current is not None:
            if current.is_emergency or (current.is_admin and is_admin_email(db, current.email)):
                return {"authenticated": True, "mode": "cookie", "session": current.to_dict()}
            if is_admin_email(db, current.email):
                return _issue_admin_cookie(request, audit, current.email, "jwt")

    email = parse_principal(request.headers)
    if not email:
        return {"authenticated": False, "reason": "no-aad"}

    if not is_admin_email(db, email):
        return {"authenticated": False, "reason": "not-admin", "email": email}

    return _issue_admin_cookie(request, audit, email, "aad-bootstrap")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

@router.get("/audit")
@with_admin_auth
def list_audit_logs(
    request: Request,
    session: Principal,
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = Query(None),
    adminEmail: Optional[str] = Query(None),
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
):
    """Recent audit rows (optionally filtered) plus per-action counts for the last ``days`` days."""
    logs = recent_logs(db, limit=limit, action=action, admin_email=adminEmail)
    data = [AuditLogResponse.model_validate(log).model_dump(mode="json") for log in logs]

    audit.record(
        AuditAction.VIEW_AUDIT_LOGS,
        session.email,
        metadata={"limit": limit, "action": action, "adminEmail": adminEmail},
        request=request,
    )

    return JSONResponse(content={
        "ok": True,
        "data": data,
        "meta": {"count": len(data), "stats": audit_stats(db, days=days), "timestamp": _timestamp()},
    })


# ---------------------------------------------------------------------------
# Admin logout
# ---------------------------------------------------------------------------

@router.post("/logout")
def admin_logout(request: Request, audit: AuditLogWriter = Depends(get_audit_writer)):
    """End an admin (or break-glass) session."""
    token = request_token(request)
    if token:
        try:
            session = verify_token(token)
        except TokenError:
            session = None
        if session is not None:
            audit.record(
                AuditAction.LOGOUT,
                session.email,
                metadata={"isEmergency": session.is_emergency},
                request=request,
            )

    response = JSONResponse(content={"success": True})
    clear_session_cookie(response)
    return response
