"""Pytest configuration and fixtures"""
import os
from typing import Dict, Generator, Optional

# Settings are read once at import time, so configure before importing the app
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret-key-for-unit-tests-only"
os.environ["AZURE_CLIENT_ID"] = "test-client-id"
os.environ["AZURE_CLIENT_SECRET"] = "test-client-secret"
os.environ["AZURE_TENANT_ID"] = "test-tenant"
os.environ["BREAK_GLASS_URL_TOKEN"] = "url-token-123"
os.environ["BREAK_GLASS_EMAIL"] = "breakglass@example.com"
os.environ["BREAK_GLASS_PASSWORD"] = "correct horse battery staple"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["AUDIT_WORKERS"] = "0"
os.environ.pop("INITIAL_ADMIN_EMAIL", None)
os.environ.pop("APP_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from peoplefinder.api.deps import get_audit_writer, get_directory
from peoplefinder.database import Base, get_db
from peoplefinder.main import app
from peoplefinder.models.admin import Admin
from peoplefinder.models.audit_log import AuditLog
from peoplefinder.utils.audit import AuditLogWriter
from peoplefinder.utils.jwt_utils import issue_token
from peoplefinder.utils.okta import DirectoryUnavailable, DirectoryUser

TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeDirectory:
    """Stands in for OktaDirectory in route tests"""

    def __init__(self):
        self.users: Dict[str, DirectoryUser] = {}
        self.unavailable = False
        self.calls = []

    def add(self, email: str) -> None:
        self.users[email.lower()] = DirectoryUser(id=f"00u{len(self.users)}", email=email.lower())

    def find_user_by_email(self, email: str) -> Optional[DirectoryUser]:
        self.calls.append(email)
        if self.unavailable:
            raise DirectoryUnavailable("Okta returned HTTP 503")
        return self.users.get(email.lower())


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def audit_writer() -> AuditLogWriter:
    """Inline audit writer against the test database"""
    return AuditLogWriter(TestingSessionLocal)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture(scope="function")
def client(db: Session, audit_writer: AuditLogWriter, directory: FakeDirectory) -> Generator[TestClient, None, None]:
    """Create test client with database, audit and directory overrides"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_writer] = lambda: audit_writer
    app.dependency_overrides[get_directory] = lambda: directory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_user(db: Session) -> Admin:
    """An existing admin row"""
    admin = Admin(email="admin@example.com", username="admin", created_by="test")
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


@pytest.fixture
def admin_headers(admin_user: Admin) -> dict:
    """Bearer headers for the admin_user session"""
    return {"Authorization": f"Bearer {issue_token(admin_user.email, True)}"}


@pytest.fixture
def user_headers() -> dict:
    """Bearer headers for a signed-in non-admin"""
    return {"Authorization": f"Bearer {issue_token('user@example.com', False)}"}


def _read_audit_rows(action: Optional[str] = None):
    session = TestingSessionLocal()
    try:
        query = session.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        return query.order_by(AuditLog.created_at).all()
    finally:
        session.close()


@pytest.fixture
def audit_rows(db: Session):
    """Reader for audit rows written through the audit writer's own sessions"""
    return _read_audit_rows
