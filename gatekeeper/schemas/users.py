from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class UserResponse(BaseModel):
    id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    is_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime


class ProfileResponse(BaseModel):
    user_id: int
    full_name: Optional[str] = None
    onboarding_completed: bool = False
