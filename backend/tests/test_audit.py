"""Tests for the audit log writer and queries"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from peoplefinder.models.audit_log import AuditLog
from peoplefinder.utils.audit import AuditAction, AuditLogWriter, audit_stats, client_ip, recent_logs


def _broken_session():
    raise RuntimeError("database is down")


def _request(headers=None, host="10.0.0.9"):
    return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=host))


@pytest.mark.parametrize("value,expected", [
    ("CREATE_ADMIN", AuditAction.CREATE_ADMIN),
    (" view_admins ", AuditAction.VIEW_ADMINS),
    ("SOMETHING_NEW", AuditAction.UNKNOWN),
    (None, AuditAction.UNKNOWN),
])
def test_parse_action(value, expected):
    assert AuditAction.parse(value) is expected


def test_client_ip_prefers_forwarded_header():
    assert client_ip(_request({"x-forwarded-for": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"
    assert client_ip(_request({"x-real-ip": "198.51.100.2"})) == "198.51.100.2"
    assert client_ip(_request()) == "10.0.0.9"
    assert client_ip(None) is None


def test_record_writes_normalized_row(db: Session, audit_writer: AuditLogWriter, audit_rows):
    request = _request({"user-agent": "pytest", "x-forwarded-for": "203.0.113.7"})

    audit_writer.record(
        AuditAction.CREATE_ADMIN,
        "Admin@Example.com",
        target_email="New@Example.com",
        metadata={"username": "new"},
        request=request,
    )

    row = audit_rows("CREATE_ADMIN")[0]
    assert row.admin_email == "admin@example.com"
    assert row.target_email == "new@example.com"
    assert row.ip_address == "203.0.113.7"
    assert row.user_agent == "pytest"
    assert row.log_metadata == {"username": "new"}


def test_record_without_actor_or_metadata(db: Session, audit_writer: AuditLogWriter, audit_rows):
    audit_writer.record(AuditAction.AUTH_FAILED, None)

    row = audit_rows("AUTH_FAILED")[0]
    assert row.admin_email == "unknown"
    assert row.log_metadata == {}


def test_inline_write_failure_is_swallowed():
    """A broken database never surfaces to the caller"""
    writer = AuditLogWriter(_broken_session)

    with patch("peoplefinder.utils.audit.record_audit_failure") as failures:
        writer.record(AuditAction.VIEW_ADMINS, "admin@example.com")

    failures.assert_called_once()


def test_background_write_failure_is_counted():
    writer = AuditLogWriter(_broken_session, executor=ThreadPoolExecutor(max_workers=1))

    with patch("peoplefinder.utils.audit.record_audit_failure") as failures:
        writer.record(AuditAction.VIEW_ADMINS, "admin@example.com")
        writer.shutdown(wait=True)

    failures.assert_called_once()


def test_record_after_shutdown_is_swallowed():
    writer = AuditLogWriter(lambda: None, executor=ThreadPoolExecutor(max_workers=1))
    writer.shutdown()

    with patch("peoplefinder.utils.audit.record_audit_failure") as failures:
        writer.record(AuditAction.LOGOUT, "admin@example.com")

    failures.assert_called_once()


def test_background_writes_land(db: Session, session_factory, audit_rows):
    writer = AuditLogWriter(session_factory, executor=ThreadPoolExecutor(max_workers=2))
    for _ in range(3):
        writer.record(AuditAction.AUTH_LOGIN, "alice@example.com", metadata={"method": "oauth"})
    writer.shutdown(wait=True)

    assert len(audit_rows("AUTH_LOGIN")) == 3


def test_recent_logs_and_stats(db: Session):
    now = datetime.utcnow()
    db.add_all([
        AuditLog(action="VIEW_ADMINS", admin_email="a@example.com", created_at=now - timedelta(minutes=2)),
        AuditLog(action="VIEW_ADMINS", admin_email="b@example.com", created_at=now - timedelta(minutes=1)),
        AuditLog(action="CREATE_ADMIN", admin_email="a@example.com", created_at=now),
        AuditLog(action="CREATE_ADMIN", admin_email="a@example.com", created_at=now - timedelta(days=30)),
    ])
    db.commit()

    newest_first = recent_logs(db)
    assert [row.created_at for row in newest_first] == sorted(
        (row.created_at for row in newest_first), reverse=True
    )
    assert len(recent_logs(db, limit=2)) == 2
    assert {row.admin_email for row in recent_logs(db, action="view_admins")} == {
        "a@example.com", "b@example.com"
    }
    assert len(recent_logs(db, admin_email="A@example.com")) == 3

    assert audit_stats(db, days=7) == {"VIEW_ADMINS": 2, "CREATE_ADMIN": 1}
    assert audit_stats(db, days=60) == {"VIEW_ADMINS": 2, "CREATE_ADMIN": 2}
