import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import EmailStr, Field, field_validator

from portal_auth.schemas.base import CamelModel


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=2, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=32)

    @field_validator("username", "full_name")
    @classmethod
    def normalize_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("This field is required")
        return cleaned

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("phone_number")
    @classmethod
    def normalize_phone_number(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            return None
        digits = re.sub(r"\D", "", cleaned)
        if len(digits) < 10 or len(digits) > 15:
            raise ValueError("Phone number must have 10 to 15 digits")
        return f"+{digits}" if cleaned.startswith("+") else digits


class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    full_name: str
    phone_number: Optional[str] = None
    is_email_verified: bool = False
    is_phone_verified: bool = False
    mfa_enabled: bool = False
    is_active: bool = True
    membership_level: Optional[str] = None
    membership_expires: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    roles: list[str] = Field(default_factory=list)
    created_at: datetime


class MembershipUpdate(CamelModel):
    membership_level: Optional[str] = Field(default=None, max_length=32)
    membership_expires: Optional[datetime] = None


class AuditLogResponse(CamelModel):
    id: int
    action: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime


class AccountStatusUpdate(CamelModel):
    is_active: bool


class RoleAssignment(CamelModel):
    role: Literal["client", "staff", "admin"]
