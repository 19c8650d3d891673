from typing import Literal, Optional

from pydantic import EmailStr, Field, field_validator

from portal_auth.schemas.base import CamelModel
from portal_auth.schemas.users import UserResponse
from portal_auth.services.verification import CODE_LENGTH

Channel = Literal["email", "sms"]


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    mfa_channel: Channel = "email"

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class VerifyMfaRequest(CamelModel):
    user_id: int
    code: str = Field(min_length=CODE_LENGTH, max_length=CODE_LENGTH)
    type: Channel

    @field_validator("code")
    @classmethod
    def digits_only(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("Code must contain digits only")
        return value


class VerifyContactRequest(CamelModel):
    code: str = Field(min_length=CODE_LENGTH, max_length=CODE_LENGTH)
    type: Channel

    @field_validator("code")
    @classmethod
    def digits_only(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("Code must contain digits only")
        return value


class MfaToggleRequest(CamelModel):
    enabled: bool


class AuthResponse(CamelModel):
    user: UserResponse
    token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    message: str


class MfaRequiredResponse(CamelModel):
    requires_mfa: bool = True
    user_id: int
    channel: Channel
    message: str = "MFA verification required"


class MessageResponse(CamelModel):
    message: str
    expires_in_seconds: Optional[int] = None
