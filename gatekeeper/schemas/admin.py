from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.services.contacts import ContactType


class BlacklistEntryResponse(BaseModel):
    id: int
    contact_value: str
    contact_type: str
    reason: str
    note: Optional[str] = None
    blacklisted_at: datetime
    expires_at: datetime
    is_active: bool
    time_remaining: str


class BlacklistListResponse(BaseModel):
    entries: list[BlacklistEntryResponse]
    total: int
    has_more: bool
    page: int
    limit: int


class BlacklistStatsResponse(BaseModel):
    total_active: int
    email_blacklisted: int
    phone_blacklisted: int
    max_send_attempts: int
    max_verify_attempts: int
    manual_blocks: int


class ManualBlockRequest(BaseModel):
    contact_value: str = Field(min_length=3, max_length=255)
    contact_type: ContactType
    duration_hours: int = Field(default=24, ge=1, le=24 * 365)
    note: str = Field(default="Manual admin block", max_length=255)


class CleanupRequest(BaseModel):
    otp_retention_days: Optional[int] = Field(default=None, ge=0)
    blacklist_retention_days: Optional[int] = Field(default=None, ge=0)
    refresh_token_grace_days: Optional[int] = Field(default=None, ge=0)
    user_retention_days: Optional[int] = Field(default=None, ge=0)
    cleanup_users: Optional[bool] = None
    batch_size: Optional[int] = Field(default=None, ge=1, le=10000)


class CleanupResponse(BaseModel):
    success: bool
    summary: dict[str, int]
    total_cleaned: int
    errors: list[str] = Field(default_factory=list)
    message: str
