"""Audit log schemas"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, model_validator


class AuditLogResponse(BaseModel):
    """Schema for audit log response"""

    id: str
    action: str
    adminEmail: str
    targetEmail: Optional[str] = None
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    createdAt: datetime

    class Config:
        from_attributes = True

    @model_validator(mode='before')
    @classmethod
    def map_columns(cls, data):
        """Map ORM attribute names to the camelCase wire names"""
        if hasattr(data, '__dict__') and hasattr(data, 'log_metadata'):
            return {
                'id': data.id,
                'action': data.action,
                'adminEmail': data.admin_email,
                'targetEmail': data.target_email,
                'ipAddress': data.ip_address,
                'userAgent': data.user_agent,
                'metadata': data.log_metadata,
                'createdAt': data.created_at,
            }
        return data
