"""Sliding-window rate limits for OTP send, verify and resend.

Every check counts ``otp_codes`` rows for the contact inside a trailing
window ending now. Checks read and then decide without a lock, so two
concurrent requests can both pass the last free slot.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import math
from typing import Optional

from sqlalchemy import func, select

from gatekeeper.config import RateLimitPolicy, settings
from gatekeeper.database import session_scope
from gatekeeper.errors import StoreUnavailable
from gatekeeper.models.otp import OtpEntry
from gatekeeper.services.contacts import ContactIdentity
from gatekeeper.services.timeutil import as_utc, utcnow

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    remaining: Optional[int] = None


def _for_contact(contact: ContactIdentity):
    return (
        OtpEntry.contact_value == contact.value,
        OtpEntry.contact_type == contact.type.value,
    )


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))


def _retry_after(oldest: Optional[datetime], span: timedelta, now: datetime) -> int:
    if oldest is None:
        return _seconds_until(now + span, now)
    return _seconds_until(as_utc(oldest) + span, now)


class RateLimiter:
    def __init__(
        self, policy: RateLimitPolicy, fail_open_on_store_error: bool = True
    ) -> None:
        self._policy = policy
        self._fail_open = fail_open_on_store_error

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def check_send(self, contact: ContactIdentity) -> RateLimitResult:
        return self._guard("send", contact, self._check_send)

    def check_verify(self, contact: ContactIdentity) -> RateLimitResult:
        return self._guard("verify", contact, self._check_verify)

    def check_resend(self, contact: ContactIdentity) -> RateLimitResult:
        return self._guard("resend", contact, self._check_resend)

    def _guard(self, name, contact, check) -> RateLimitResult:
        try:
            return check(contact, utcnow())
        except StoreUnavailable:
            if not self._fail_open:
                raise
            LOGGER.error(
                "Rate limit %s check failed for %s, allowing request",
                name,
                contact.masked(),
            )
            return RateLimitResult(allowed=True)

    def _check_send(self, contact: ContactIdentity, now: datetime) -> RateLimitResult:
        windows = (
            ("minute", timedelta(minutes=1), self._policy.send_per_minute),
            ("hour", timedelta(hours=1), self._policy.send_per_hour),
            ("day", timedelta(days=1), self._policy.send_per_day),
        )
        remaining = None
        with session_scope() as session:
            for label, span, limit in windows:
                window_start = now - span
                count, oldest = session.execute(
                    select(func.count(), func.min(OtpEntry.created_at)).where(
                        *_for_contact(contact), OtpEntry.created_at >= window_start
                    )
                ).one()
                if count >= limit:
                    LOGGER.info(
                        "Send rate limit per %s reached for %s (%s/%s)",
                        label,
                        contact.masked(),
                        count,
                        limit,
                    )
                    return RateLimitResult(
                        allowed=False,
                        reason=f"Too many codes requested. Limit is {limit} per {label}.",
                        retry_after_seconds=_retry_after(oldest, span, now),
                        remaining=0,
                    )
                headroom = limit - count
                remaining = headroom if remaining is None else min(remaining, headroom)
        return RateLimitResult(allowed=True, remaining=remaining)

    def _check_verify(self, contact: ContactIdentity, now: datetime) -> RateLimitResult:
        window_start = now - timedelta(minutes=1)
        with session_scope() as session:
            recent_attempts, oldest = session.execute(
                select(
                    func.coalesce(func.sum(OtpEntry.attempts), 0),
                    func.min(OtpEntry.created_at),
                ).where(*_for_contact(contact), OtpEntry.created_at >= window_start)
            ).one()
            active_attempts = session.execute(
                select(OtpEntry.attempts)
                .where(
                    *_for_contact(contact),
                    OtpEntry.is_used.is_(False),
                    OtpEntry.expires_at > now,
                )
                .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()

        limit = self._policy.verify_per_minute
        if recent_attempts >= limit:
            return RateLimitResult(
                allowed=False,
                reason=f"Too many verification attempts. Limit is {limit} per minute.",
                retry_after_seconds=_retry_after(oldest, timedelta(minutes=1), now),
                remaining=0,
            )
        per_code = self._policy.verify_per_code
        if active_attempts is not None and active_attempts >= per_code:
            return RateLimitResult(
                allowed=False,
                reason="Too many attempts for this code. Request a new one.",
                remaining=0,
            )
        remaining = limit - recent_attempts
        if active_attempts is not None:
            remaining = min(remaining, per_code - active_attempts)
        return RateLimitResult(allowed=True, remaining=remaining)

    def _check_resend(self, contact: ContactIdentity, now: datetime) -> RateLimitResult:
        with session_scope() as session:
            latest = session.execute(
                select(func.max(OtpEntry.created_at)).where(*_for_contact(contact))
            ).scalar_one()
            resends, oldest_resend = session.execute(
                select(func.count(), func.min(OtpEntry.created_at)).where(
                    *_for_contact(contact),
                    OtpEntry.resend_count > 0,
                    OtpEntry.created_at >= now - timedelta(hours=1),
                )
            ).one()

        interval = timedelta(seconds=self._policy.resend_min_interval_seconds)
        if latest is not None and as_utc(latest) + interval > now:
            return RateLimitResult(
                allowed=False,
                reason="Please wait before requesting another code.",
                retry_after_seconds=_seconds_until(as_utc(latest) + interval, now),
            )
        limit = self._policy.resend_max_per_hour
        if resends >= limit:
            return RateLimitResult(
                allowed=False,
                reason=f"Too many resend requests. Limit is {limit} per hour.",
                retry_after_seconds=_retry_after(oldest_resend, timedelta(hours=1), now),
                remaining=0,
            )
        return RateLimitResult(allowed=True, remaining=limit - resends)


rate_limiter = RateLimiter(settings.rate_limit, settings.fail_open_on_store_error)
