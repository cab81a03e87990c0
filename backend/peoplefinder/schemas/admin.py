"""Admin schemas"""
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class AdminCreate(BaseModel):
    email: str = Field(..., description="Email of the user to grant admin access")
    username: Optional[str] = Field(None, description="Display username (defaults to the email local part)")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v


class AdminResponse(BaseModel):
    id: str
    email: str
    username: Optional[str]
    created_at: datetime = Field(..., serialization_alias="createdAt")
    created_by: str = Field(..., serialization_alias="createdBy")

    class Config:
        from_attributes = True
        populate_by_name = True
