"""Audit log writer and query helpers.

Every authentication attempt and admin mutation is recorded here. Writes are
best-effort: a failed insert is logged and counted but never reaches the
request that triggered it.
"""
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from peoplefinder.middleware.monitoring import record_audit_failure
from peoplefinder.models.audit_log import AuditLog
from peoplefinder.utils.logger import logger


class AuditAction(str, Enum):
    AUTH_LOGIN = "AUTH_LOGIN"
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_LOGOUT = "AUTH_LOGOUT"
    AUTH_TOKEN_REFRESH = "AUTH_TOKEN_REFRESH"
    LOGOUT = "LOGOUT"
    BREAK_GLASS_ACCESS = "BREAK_GLASS_ACCESS"
    BREAK_GLASS_LOGIN = "BREAK_GLASS_LOGIN"
    FAILED_LOGIN = "FAILED_LOGIN"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    CREATE_ADMIN = "CREATE_ADMIN"
    DELETE_ADMIN = "DELETE_ADMIN"
    VIEW_ADMINS = "VIEW_ADMINS"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AuditAction":
        """Map a stored/queried string to an action; unrecognized → UNKNOWN"""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


def client_ip(request: Optional[Request]) -> Optional[str]:
    """Client address: first X-Forwarded-For hop, then X-Real-IP, then the peer"""
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


class AuditLogWriter:
    """
    Appends AuditLog rows using its own session per write.

    Args:
        session_factory: Callable returning a new SQLAlchemy session.
        executor:        Optional executor; when given, writes are submitted
                         as background tasks. Without one they run inline.
    """

    def __init__(self, session_factory: Callable[[], Session], executor: Optional[Executor] = None):
        self.session_factory = session_factory
        self.executor = executor

    def record(
        self,
        action: AuditAction,
        actor_email: Optional[str],
        target_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> None:
        """Queue or perform one audit write. Never raises."""
        row = {
            "action": AuditAction.parse(action).value,
            "admin_email": (actor_email or "unknown").strip().lower(),
            "target_email": target_email.strip().lower() if target_email else None,
            "ip_address": client_ip(request),
            "user_agent": request.headers.get("user-agent") if request is not None else None,
            "log_metadata": metadata or {},
        }

        if self.executor is None:
            try:
                self._write(row)
            except Exception:
                self._on_failure(row)
            return

        try:
            future = self.executor.submit(self._write, row)
        except RuntimeError:
            # Executor already shut down
            self._on_failure(row)
            return
        future.add_done_callback(lambda f: self._on_done(f, row))

    def _write(self, row: Dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            db.add(AuditLog(**row))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _on_done(self, future: Future, row: Dict[str, Any]) -> None:
        exc = future.exception()
        if exc is not None:
            self._on_failure(row, exc)

    def _on_failure(self, row: Dict[str, Any], exc: Optional[BaseException] = None) -> None:
        record_audit_failure()
        logger.error(
            f"Failed to write audit log: {row['action']}",
            extra={"action": row["action"], "email": row["admin_email"]},
            exc_info=exc if exc is not None else True,
        )

    def shutdown(self, wait: bool = True) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=wait)


def recent_logs(
    db: Session,
    limit: int = 100,
    action: Optional[str] = None,
    admin_email: Optional[str] = None,
) -> List[AuditLog]:
    """Most recent audit rows, newest first"""
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == AuditAction.parse(action).value)
    if admin_email:
        query = query.filter(AuditLog.admin_email == admin_email.strip().lower())
    return query.order_by(AuditLog.created_at.desc()).limit(limit).all()


def audit_stats(db: Session, days: int = 7) -> Dict[str, int]:
    """Row count per action over the last ``days`` days"""
    since = datetime.utcnow() - timedelta(days=days)
    rows = (
        db.query(AuditLog.action, func.count(AuditLog.id))
        .filter(AuditLog.created_at >= since)
        .group_by(AuditLog.action)
        .all()
    )
    return {action: count for action, count in rows}
