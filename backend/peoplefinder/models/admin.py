"""Admin model: email-identified administrators"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from peoplefinder.database import Base


def generate_uuid_string():
    """Generate UUID as string for SQLite compatibility"""
    return str(uuid.uuid4())


class Admin(Base):
    """An administrator of the directory application.

    ``email`` is stored lowercased so lookups are case-insensitive.  Rows are
    created by another admin or by the bootstrap seed (``created_by="bootstrap"``)
    and live until another admin deletes them.
    """

    __tablename__ = "admins"

    id = Column(String(36), primary_key=True, default=generate_uuid_string)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(String(255), nullable=False)
