"""Database models"""
from peoplefinder.models.admin import Admin
from peoplefinder.models.audit_log import AuditLog

__all__ = ["Admin", "AuditLog"]
