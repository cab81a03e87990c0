"""Health check endpoints"""
import time
from datetime import datetime, timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from peoplefinder import __version__
from peoplefinder.config import settings
from peoplefinder.database import get_db
from peoplefinder.models.admin import Admin
from peoplefinder.models.audit_log import AuditLog
from peoplefinder.utils.logger import logger
from peoplefinder.utils.microsoft import check_identity_provider

router = APIRouter(prefix="/health", tags=["health"])

# Track startup time
STARTUP_TIME = time.time()


@router.get("")
def health_check():
    """
    Basic health check endpoint

    Returns 200 if service is running
    """
    return {
        "status": "healthy",
        "service": "People Finder",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check

    Checks:
    - Database connectivity and latency
    - Identity provider discovery endpoint (only when sign-in is configured)

    503 when the database is unreachable. An unreachable identity provider
    only degrades readiness, since break-glass login still works without it.
    """
    checks: Dict[str, Any] = {
        "database": False,
        "database_latency_ms": None,
        "identity_provider": "skipped",
    }

    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        checks["database"] = True
        checks["database_latency_ms"] = round((time.time() - start) * 1000, 2)
    except SQLAlchemyError as e:
        logger.error(f"Readiness database check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "checks": checks, "message": "Database check failed"},
        )

    overall = "ready"
    if settings.AZURE_CLIENT_ID:
        idp = check_identity_provider()
        checks["identity_provider"] = idp
        if not idp["ok"]:
            overall = "degraded"

    return {
        "status": overall,
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/live")
def liveness_check():
    """
    Liveness check - verifies service is alive
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/stats")
def health_stats(request: Request, db: Session = Depends(get_db)):
    """
    System statistics

    Returns:
    - Admin and audit row counts
    - Directory cache statistics
    - System info
    """
    try:
        since = datetime.utcnow() - timedelta(hours=24)
        admin_count = db.query(Admin).count()
        audit_last_24h = db.query(AuditLog).filter(AuditLog.created_at >= since).count()
    except SQLAlchemyError as e:
        logger.error(f"Stats query failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "message": "Database unavailable", "timestamp": datetime.utcnow().isoformat()},
        )

    cache = getattr(request.app.state, "cache", None)

    return {
        "status": "healthy",
        "admins": {"total": admin_count},
        "audit": {"last_24h": audit_last_24h},
        "cache": cache.stats() if cache is not None else None,
        "integrations": {
            "identity_provider": bool(settings.AZURE_CLIENT_ID),
            "okta": settings.okta_configured,
            "break_glass": settings.break_glass_configured,
        },
        "system": {
            "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
            "environment": settings.ENVIRONMENT
        },
        "timestamp": datetime.utcnow().isoformat()
    }
