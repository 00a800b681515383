"""Error kinds raised by the authentication services.

Services raise these; the HTTP layer decides status codes and wording.
"""

from datetime import datetime
from typing import Optional


class AuthError(Exception):
    error = "auth_error"
    message = "Authentication failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_detail(self) -> dict:
        return {"error": self.error, "message": self.message}


class Blacklisted(AuthError):
    error = "blacklisted"
    message = "This contact is temporarily blocked due to too many attempts"

    def __init__(
        self, reason: Optional[str] = None, expires_at: Optional[datetime] = None
    ) -> None:
        super().__init__()
        self.reason = reason
        self.expires_at = expires_at

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["reason"] = self.reason
        detail["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return detail


class RateLimited(AuthError):
    error = "rate_limited"
    message = "Too many requests. Wait and try again."

    def __init__(
        self,
        reason: Optional[str] = None,
        retry_after: Optional[int] = None,
        remaining: Optional[int] = None,
    ) -> None:
        super().__init__(reason)
        self.retry_after = retry_after
        self.remaining = remaining

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["retry_after"] = self.retry_after
        detail["remaining"] = self.remaining
        return detail


class NotFoundOrExpired(AuthError):
    error = "not_found_or_expired"
    message = "No valid code found or the code has expired. Request a new one."


class InvalidCode(AuthError):
    error = "invalid_code"
    message = "Incorrect code. Double-check and try again."

    def __init__(self, attempts: int, should_blacklist: bool = False) -> None:
        super().__init__(
            "Too many incorrect attempts. This contact is temporarily blocked."
            if should_blacklist
            else None
        )
        self.attempts = attempts
        self.should_blacklist = should_blacklist

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["attempts"] = self.attempts
        detail["should_blacklist"] = self.should_blacklist
        return detail


class StoreUnavailable(AuthError):
    error = "store_unavailable"
    message = "Service temporarily unavailable. Try again."


class InvalidContact(ValueError):
    pass


class DeliveryError(RuntimeError):
    pass
