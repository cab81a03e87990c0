"""Authentication utilities"""
import hmac
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from peoplefinder.config import settings
from peoplefinder.models.admin import Admin


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase an email address"""
    return (email or "").strip().lower()


def get_admin_by_email(db: Session, email: str) -> Optional[Admin]:
    """Case-insensitive lookup in the admins table"""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(Admin).filter(func.lower(Admin.email) == normalized).first()


def is_admin_email(db: Session, email: Optional[str]) -> bool:
    """
    Check whether an email belongs to an admin

    Args:
        db: Database session
        email: Email to check, any case

    Returns:
        True if a matching Admin row exists
    """
    if not email:
        return False
    return get_admin_by_email(db, email) is not None


def _secrets_equal(supplied: Optional[str], expected: Optional[str]) -> bool:
    # Unset secrets never match, even against an empty input
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def verify_emergency_token(token: Optional[str]) -> bool:
    """Compare a URL token against BREAK_GLASS_URL_TOKEN in constant time"""
    return _secrets_equal(token, settings.BREAK_GLASS_URL_TOKEN)


def verify_break_glass_credentials(email: Optional[str], password: Optional[str]) -> bool:
    """Check the out-of-band break-glass credential pair.

    Both comparisons always run so the response time does not reveal which
    half was wrong.
    """
    email_ok = _secrets_equal(normalize_email(email), normalize_email(settings.BREAK_GLASS_EMAIL))
    password_ok = _secrets_equal(password, settings.BREAK_GLASS_PASSWORD)
    return email_ok and password_ok
