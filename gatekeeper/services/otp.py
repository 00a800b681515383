from dataclasses import dataclass
from datetime import datetime, timedelta
import hmac
import logging
import secrets

from sqlalchemy import select, update

from gatekeeper.config import OtpPolicy, settings
from gatekeeper.database import session_scope
from gatekeeper.errors import (
    Blacklisted,
    InvalidCode,
    NotFoundOrExpired,
    RateLimited,
    StoreUnavailable,
)
from gatekeeper.models.otp import OtpEntry
from gatekeeper.services.blacklist import (
    BlacklistEngine,
    BlacklistReason,
    blacklist_engine,
)
from gatekeeper.services.contacts import ContactIdentity
from gatekeeper.services.rate_limiter import RateLimiter, RateLimitResult, rate_limiter
from gatekeeper.services.timeutil import utcnow
from gatekeeper.services.users import find_or_create

LOGGER = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


@dataclass(frozen=True)
class IssuedOtp:
    record_id: int
    user_id: int
    code: str
    expires_at: datetime
    resend_count: int


@dataclass(frozen=True)
class VerifiedOtp:
    record_id: int
    user_id: int | None
    attempts: int


def generate_code() -> str:
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def _for_contact(contact: ContactIdentity):
    return (
        OtpEntry.contact_value == contact.value,
        OtpEntry.contact_type == contact.type.value,
    )


def _rate_limited(result: RateLimitResult) -> RateLimited:
    return RateLimited(
        reason=result.reason,
        retry_after=result.retry_after_seconds,
        remaining=result.remaining,
    )


class OtpStore:
    """Issues and verifies one-time codes for a contact.

    At most one unused, unexpired record per contact is live: issuing a
    code marks every earlier unused record for that contact as used.
    """

    def __init__(
        self,
        policy: OtpPolicy,
        blacklist: BlacklistEngine,
        limiter: RateLimiter,
    ) -> None:
        self._policy = policy
        self._blacklist = blacklist
        self._limiter = limiter

    @property
    def policy(self) -> OtpPolicy:
        return self._policy

    def issue(self, contact: ContactIdentity, resend: bool = False) -> IssuedOtp:
        self._ensure_not_blacklisted(contact)

        limit = self._limiter.check_send(contact)
        if limit.allowed and resend:
            limit = self._limiter.check_resend(contact)
        if not limit.allowed:
            self._escalate_send_abuse(contact)
            raise _rate_limited(limit)

        now = utcnow()
        code = generate_code()
        expires_at = now + timedelta(minutes=self._policy.expiry_minutes)

        with session_scope() as session:
            resend_count = 0
            if resend:
                previous = session.execute(
                    select(OtpEntry.resend_count)
                    .where(*_for_contact(contact))
                    .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                    .limit(1)
                ).scalar_one_or_none()
                resend_count = (previous or 0) + 1
            session.execute(
                update(OtpEntry)
                .where(*_for_contact(contact), OtpEntry.is_used.is_(False))
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
            user, _ = find_or_create(session, contact)
            entry = OtpEntry(
                user_id=user.id,
                contact_value=contact.value,
                contact_type=contact.type.value,
                code=code,
                created_at=now,
                expires_at=expires_at,
                attempts=0,
                is_used=False,
                resend_count=resend_count,
            )
            session.add(entry)
            session.flush()
            issued = IssuedOtp(
                record_id=entry.id,
                user_id=user.id,
                code=code,
                expires_at=expires_at,
                resend_count=resend_count,
            )
        LOGGER.info(
            "Issued OTP %s for %s (resend=%s)",
            issued.record_id,
            contact.masked(),
            resend_count,
        )
        return issued

    def verify(self, contact: ContactIdentity, submitted_code: str) -> VerifiedOtp:
        self._ensure_not_blacklisted(contact)

        limit = self._limiter.check_verify(contact)
        if not limit.allowed:
            raise _rate_limited(limit)

        now = utcnow()
        clean_code = submitted_code.strip()
        with session_scope() as session:
            entry = session.execute(
                select(OtpEntry)
                .where(
                    *_for_contact(contact),
                    OtpEntry.is_used.is_(False),
                    OtpEntry.expires_at > now,
                    OtpEntry.attempts < self._policy.max_verify_attempts,
                )
                .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                raise NotFoundOrExpired()

            matched = hmac.compare_digest(
                entry.code.encode("utf-8"), clean_code.encode("utf-8")
            )
            values = {"attempts": OtpEntry.attempts + 1}
            if matched:
                values.update(is_used=True, verified_at=now)
            # Single conditional UPDATE: the record must still be live when written,
            # so a concurrent attempt that exhausted or consumed it wins.
            attempts = session.execute(
                update(OtpEntry)
                .where(
                    OtpEntry.id == entry.id,
                    OtpEntry.is_used.is_(False),
                    OtpEntry.expires_at > now,
                    OtpEntry.attempts < self._policy.max_verify_attempts,
                )
                .values(**values)
                .returning(OtpEntry.attempts)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            record_id, user_id = entry.id, entry.user_id

        if attempts is None:
            raise NotFoundOrExpired()
        if matched:
            LOGGER.info("Verified OTP %s for %s", record_id, contact.masked())
            return VerifiedOtp(record_id=record_id, user_id=user_id, attempts=attempts)

        should_blacklist = attempts >= self._policy.max_verify_attempts
        if should_blacklist:
            self._blacklist.add(contact, BlacklistReason.MAX_VERIFY_ATTEMPTS)
        LOGGER.info(
            "Incorrect OTP for %s (attempt %s/%s)",
            contact.masked(),
            attempts,
            self._policy.max_verify_attempts,
        )
        raise InvalidCode(attempts=attempts, should_blacklist=should_blacklist)

    def _ensure_not_blacklisted(self, contact: ContactIdentity) -> None:
        status = self._blacklist.is_blacklisted(contact)
        if status.blacklisted:
            raise Blacklisted(reason=status.reason, expires_at=status.expires_at)

    def _escalate_send_abuse(self, contact: ContactIdentity) -> None:
        try:
            self._blacklist.check_send_attempts(contact)
        except StoreUnavailable:
            LOGGER.error("Send-abuse escalation failed for %s", contact.masked())


otp_store = OtpStore(settings.otp, blacklist_engine, rate_limiter)
