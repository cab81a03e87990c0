"""Audit log model"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, JSON, String, Text

from peoplefinder.database import Base


def generate_uuid_string():
    """Generate UUID as string for SQLite compatibility"""
    return str(uuid.uuid4())


class AuditLog(Base):
    """AuditLog model - append-only record of authentication and admin events"""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid_string)
    action = Column(String(64), nullable=False, index=True)
    admin_email = Column(String(255), nullable=False, index=True)
    target_email = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    log_metadata = Column("metadata", JSON, nullable=True)  # Column name is 'metadata', attribute is 'log_metadata'
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
