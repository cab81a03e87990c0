"""Request guards, session cookies and dependency providers.

Guards return a result object instead of raising, so a handler (or the
``with_admin_auth`` wrapper) can hand the ready-made failure response
straight back:

    result = require_auth(request)
    if not result.authorized:
        return result.response

Sessions are resolved in this order:
  - ``Authorization: Bearer <JWT>`` or the ``jwt`` cookie
  - the App Service Easy Auth principal header (admin routes only)
"""
import functools
import inspect
import time
from typing import Callable, NamedTuple, Optional

from fastapi import Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from peoplefinder.config import settings
from peoplefinder.database import get_db
from peoplefinder.middleware.monitoring import record_auth_failure
from peoplefinder.utils.audit import AuditAction, AuditLogWriter
from peoplefinder.utils.auth import is_admin_email
from peoplefinder.utils.easyauth import parse_principal
from peoplefinder.utils.jwt_utils import Principal, TokenError, extract_token, peek_email, verify_token
from peoplefinder.utils.logger import logger
from peoplefinder.utils.okta import OktaDirectory

# Easy Auth admins get a session as long as a break-glass one
EASYAUTH_SESSION_SECONDS = 3600


# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------

def get_audit_writer(request: Request) -> AuditLogWriter:
    """The AuditLogWriter constructed in the application lifespan"""
    return request.app.state.audit_writer


def get_directory(request: Request) -> OktaDirectory:
    """The OktaDirectory constructed in the application lifespan"""
    return request.app.state.directory


def request_token(request: Request) -> Optional[str]:
    return extract_token(request.headers, request.headers.get("cookie"))


def _error(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    body = {"error": message}
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# require_auth
# ---------------------------------------------------------------------------

class AuthResult(NamedTuple):
    authorized: bool
    user: Optional[Principal] = None
    response: Optional[JSONResponse] = None


def require_auth(request: Request) -> AuthResult:
    """Base guard for any signed-in route. Never raises."""
    token = request_token(request)
    if not token:
        record_auth_failure("session")
        return AuthResult(
            authorized=False,
            response=_error(status.HTTP_401_UNAUTHORIZED, "Authentication required", "AUTH_REQUIRED"),
        )

    try:
        user = verify_token(token)
    except TokenError as exc:
        logger.info(f"Session validation failed: {exc}", extra={"path": request.url.path})
        record_auth_failure("session")
        return AuthResult(
            authorized=False,
            response=_error(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token", "TOKEN_INVALID"),
        )

    return AuthResult(authorized=True, user=user)


# ---------------------------------------------------------------------------
# verify_admin_auth
# ---------------------------------------------------------------------------

class AdminAuthResult(NamedTuple):
    authenticated: bool
    session: Optional[Principal] = None
    response: Optional[JSONResponse] = None


def _deny(
    request: Request,
    audit: AuditLogWriter,
    actor: Optional[str],
    reason: str,
    response: JSONResponse,
) -> AdminAuthResult:
    record_auth_failure("admin")
    audit.record(
        AuditAction.UNAUTHORIZED_ACCESS,
        actor or "anonymous",
        metadata={"path": request.url.path, "method": request.method, "reason": reason},
        request=request,
    )
    logger.warning(
        f"Admin access denied: {reason}",
        extra={"email": actor, "path": request.url.path, "method": request.method},
    )
    return AdminAuthResult(authenticated=False, response=response)


def verify_admin_auth(request: Request, db: Session, audit: AuditLogWriter) -> AdminAuthResult:
    """
    Resolve an admin session for the request. Never raises.

    Emergency sessions are accepted on the token alone, without touching the
    database or the directory. Other sessions must still match an Admin row,
    so removing an admin takes effect before their token expires.
    """
    token = request_token(request)

    if token:
        try:
            session = verify_token(token)
        except TokenError:
            return _deny(
                request, audit, peek_email(token), "Invalid or expired session token",
                _error(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token", "TOKEN_INVALID"),
            )

        if session.is_emergency:
            return AdminAuthResult(authenticated=True, session=session)

        if not session.is_admin:
            return _deny(
                request, audit, session.email, "Session is not an admin session",
                _error(status.HTTP_403_FORBIDDEN, "Admin access required", "ADMIN_REQUIRED"),
            )

        if not is_admin_email(db, session.email):
            return _deny(
                request, audit, session.email, "Admin removed from database",
                _error(status.HTTP_403_FORBIDDEN, "Admin access revoked", "ADMIN_REVOKED"),
            )

        return AdminAuthResult(authenticated=True, session=session)

    email = parse_principal(request.headers)
    if email:
        if is_admin_email(db, email):
            now = int(time.time())
            session = Principal(
                email=email.lower(),
                is_admin=True,
                is_emergency=False,
                issued_at=now,
                expires_at=now + EASYAUTH_SESSION_SECONDS,
            )
            return AdminAuthResult(authenticated=True, session=session)

        return _deny(
            request, audit, email, "AAD identity not found in admin table",
            _error(status.HTTP_403_FORBIDDEN, "Admin access required", "ADMIN_REQUIRED"),
        )

    return _deny(
        request, audit, None, "Missing admin session",
        _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized", "AUTH_REQUIRED"),
    )


# ---------------------------------------------------------------------------
# with_admin_auth
# ---------------------------------------------------------------------------

def with_admin_auth(handler: Callable) -> Callable:
    """Wrap a route handler so it only runs for an authenticated admin.

    The handler receives the resolved ``session`` as a keyword argument and
    otherwise declares its parameters as a normal FastAPI endpoint would::

        @router.get("/users")
        @with_admin_auth
        def list_admins(request: Request, session: Principal, db: Session = Depends(get_db)):
            ...

    ``request``, ``db`` and ``audit`` are injected into the endpoint even when
    the handler does not declare them; they are only forwarded when it does.
    """
    signature = inspect.signature(handler)
    handler_params = {name for name in signature.parameters if name != "session"}

    params = [
        p.replace(kind=inspect.Parameter.KEYWORD_ONLY)
        for name, p in signature.parameters.items()
        if name != "session"
    ]
    injected = {
        "request": inspect.Parameter("request", inspect.Parameter.KEYWORD_ONLY, annotation=Request),
        "db": inspect.Parameter(
            "db", inspect.Parameter.KEYWORD_ONLY, annotation=Session, default=Depends(get_db)
        ),
        "audit": inspect.Parameter(
            "audit", inspect.Parameter.KEYWORD_ONLY, annotation=AuditLogWriter,
            default=Depends(get_audit_writer),
        ),
    }
    for name, param in injected.items():
        if name not in handler_params:
            params.append(param)

    @functools.wraps(handler)
    def wrapper(**kwargs):
        result = verify_admin_auth(kwargs["request"], kwargs["db"], kwargs["audit"])
        if not result.authenticated:
            return result.response
        forwarded = {name: value for name, value in kwargs.items() if name in handler_params}
        return handler(session=result.session, **forwarded)

    wrapper.__signature__ = signature.replace(parameters=params)
    return wrapper


# ---------------------------------------------------------------------------
# Session cookie
# ---------------------------------------------------------------------------

def set_session_cookie(response: Response, token: str, max_age: Optional[int] = None) -> None:
    response.set_cookie(
        key=settings.JWT_COOKIE_NAME,
        value=token,
        max_age=settings.JWT_EXPIRE_SECONDS if max_age is None else max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        key=settings.JWT_COOKIE_NAME,
        value="",
        max_age=0,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
