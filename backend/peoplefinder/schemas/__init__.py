"""Pydantic schemas for request/response validation"""
from peoplefinder.schemas.admin import AdminCreate, AdminResponse
from peoplefinder.schemas.audit_log import AuditLogResponse
from peoplefinder.schemas.auth import EmergencyLoginRequest, EmergencyTokenRequest, OfficeTokenRequest

__all__ = [
    "AdminCreate",
    "AdminResponse",
    "AuditLogResponse",
    "EmergencyLoginRequest",
    "EmergencyTokenRequest",
    "OfficeTokenRequest",
]
