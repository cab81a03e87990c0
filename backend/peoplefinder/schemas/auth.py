"""Authentication request schemas"""
from typing import Optional

from pydantic import BaseModel, Field


class OfficeTokenRequest(BaseModel):
    officeToken: Optional[str] = Field(None, description="Token from Office.context.auth.getAccessToken()")


class EmergencyTokenRequest(BaseModel):
    token: Optional[str] = Field(None, description="Break-glass URL token")


class EmergencyLoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = Field(None, description="Break-glass URL token (may also be passed as ?token=)")
