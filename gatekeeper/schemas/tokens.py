from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.schemas.users import ProfileResponse, UserResponse


class TokenRefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, min_length=10, max_length=2048)


class TokenRefreshResponse(BaseModel):
    session_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: UserResponse


class SessionValidationResponse(BaseModel):
    valid: bool
    user: Optional[UserResponse] = None
    profile: Optional[ProfileResponse] = None
    error: Optional[str] = None


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, min_length=10, max_length=2048)
    all_devices: bool = False


class LogoutResponse(BaseModel):
    message: str
    revoked: int
