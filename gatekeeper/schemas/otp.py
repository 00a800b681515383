from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.schemas.users import UserResponse
from gatekeeper.services.contacts import ContactType

OTP_LENGTH = 6


class OtpRequest(BaseModel):
    contact_value: str = Field(min_length=3, max_length=255)
    contact_type: ContactType


class OtpResponse(BaseModel):
    message: str
    expires_at: datetime
    expires_in_seconds: int
    otp: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    contact_value: str = Field(min_length=3, max_length=255)
    contact_type: ContactType
    code: str = Field(min_length=OTP_LENGTH, max_length=OTP_LENGTH, pattern=r"^\d+$")


class OtpVerifyResponse(BaseModel):
    message: str
    user: UserResponse
    is_new_user: bool
    redirect_to: str
    session_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    refresh_expires_in_seconds: int
