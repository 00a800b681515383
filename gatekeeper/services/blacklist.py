from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import func, select

from gatekeeper.config import BlacklistPolicy, settings
from gatekeeper.database import session_scope
from gatekeeper.errors import StoreUnavailable
from gatekeeper.models.blacklist import BlacklistEntry
from gatekeeper.models.otp import OtpEntry
from gatekeeper.services.contacts import ContactIdentity, ContactType
from gatekeeper.services.timeutil import as_utc, utcnow

LOGGER = logging.getLogger(__name__)

SEARCH_LIMIT = 100


class BlacklistReason(str, Enum):
    MAX_SEND_ATTEMPTS = "MAX_SEND_ATTEMPTS"
    MAX_VERIFY_ATTEMPTS = "MAX_VERIFY_ATTEMPTS"
    MANUAL_BLOCK = "MANUAL_BLOCK"


@dataclass(frozen=True)
class BlacklistStatus:
    blacklisted: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class BlacklistView:
    id: int
    contact_value: str
    contact_type: str
    reason: str
    note: Optional[str]
    blacklisted_at: datetime
    expires_at: datetime
    is_active: bool
    time_remaining: str


@dataclass(frozen=True)
class BlacklistPage:
    entries: list[BlacklistView]
    total: int
    has_more: bool


@dataclass(frozen=True)
class BlacklistStats:
    total_active: int
    email_blacklisted: int
    phone_blacklisted: int
    max_send_attempts: int
    max_verify_attempts: int
    manual_blocks: int


def time_remaining(expires_at: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    seconds = int((as_utc(expires_at) - now).total_seconds())
    if seconds <= 0:
        return "Expired"
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours > 24:
        return f"{hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _to_view(entry: BlacklistEntry, now: datetime) -> BlacklistView:
    expires_at = as_utc(entry.expires_at)
    return BlacklistView(
        id=entry.id,
        contact_value=entry.contact_value,
        contact_type=entry.contact_type,
        reason=entry.reason,
        note=entry.note,
        blacklisted_at=as_utc(entry.blacklisted_at),
        expires_at=expires_at,
        is_active=expires_at > now,
        time_remaining=time_remaining(expires_at, now),
    )


def _for_contact(contact: ContactIdentity):
    return (
        BlacklistEntry.contact_value == contact.value,
        BlacklistEntry.contact_type == contact.type.value,
    )


class BlacklistEngine:
    def __init__(
        self, policy: BlacklistPolicy, fail_open_on_store_error: bool = True
    ) -> None:
        self._policy = policy
        self._fail_open = fail_open_on_store_error

    @property
    def policy(self) -> BlacklistPolicy:
        return self._policy

    def is_blacklisted(self, contact: ContactIdentity) -> BlacklistStatus:
        now = utcnow()
        try:
            with session_scope() as session:
                entry = session.execute(
                    select(BlacklistEntry)
                    .where(*_for_contact(contact), BlacklistEntry.expires_at > now)
                    .order_by(BlacklistEntry.blacklisted_at.desc(), BlacklistEntry.id.desc())
                    .limit(1)
                ).scalar_one_or_none()
        except StoreUnavailable:
            if not self._fail_open:
                raise
            LOGGER.error(
                "Blacklist lookup failed for %s, allowing request", contact.masked()
            )
            return BlacklistStatus(blacklisted=False)
        if entry is None:
            return BlacklistStatus(blacklisted=False)
        return BlacklistStatus(
            blacklisted=True,
            reason=entry.reason,
            expires_at=as_utc(entry.expires_at),
        )

    def add(
        self,
        contact: ContactIdentity,
        reason: BlacklistReason,
        duration_hours: Optional[int] = None,
        note: Optional[str] = None,
    ) -> BlacklistView:
        hours = self._policy.duration_hours if duration_hours is None else duration_hours
        if hours <= 0:
            raise ValueError("Blacklist duration must be positive")
        now = utcnow()
        entry = BlacklistEntry(
            contact_value=contact.value,
            contact_type=contact.type.value,
            reason=BlacklistReason(reason).value,
            note=note,
            blacklisted_at=now,
            expires_at=now + timedelta(hours=hours),
        )
        with session_scope() as session:
            session.add(entry)
            session.flush()
            view = _to_view(entry, now)
        LOGGER.warning(
            "Blacklisted %s for %sh reason=%s", contact.masked(), hours, view.reason
        )
        return view

    def check_send_attempts(self, contact: ContactIdentity) -> bool:
        """Blacklist the contact if it sent too many codes in the attempt window."""
        window_start = utcnow() - timedelta(hours=self._policy.attempt_window_hours)
        with session_scope() as session:
            attempt_count = session.execute(
                select(func.count())
                .select_from(OtpEntry)
                .where(
                    OtpEntry.contact_value == contact.value,
                    OtpEntry.contact_type == contact.type.value,
                    OtpEntry.created_at >= window_start,
                )
            ).scalar_one()
        if attempt_count < self._policy.max_send_attempts:
            return False
        self.add(contact, BlacklistReason.MAX_SEND_ATTEMPTS)
        return True

    def manual_block(
        self,
        contact: ContactIdentity,
        duration_hours: Optional[int] = None,
        note: str = "Manual block by admin",
    ) -> BlacklistView:
        return self.add(contact, BlacklistReason.MANUAL_BLOCK, duration_hours, note)

    def list_active(self, page: int = 1, limit: int = 50) -> BlacklistPage:
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        now = utcnow()
        offset = (page - 1) * limit
        with session_scope() as session:
            total = session.execute(
                select(func.count())
                .select_from(BlacklistEntry)
                .where(BlacklistEntry.expires_at > now)
            ).scalar_one()
            entries = (
                session.execute(
                    select(BlacklistEntry)
                    .where(BlacklistEntry.expires_at > now)
                    .order_by(BlacklistEntry.blacklisted_at.desc(), BlacklistEntry.id.desc())
                    .offset(offset)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            views = [_to_view(entry, now) for entry in entries]
        return BlacklistPage(entries=views, total=total, has_more=total > offset + limit)

    def search(
        self,
        term: str,
        contact_type: Optional[ContactType] = None,
        reason: Optional[BlacklistReason] = None,
    ) -> list[BlacklistView]:
        now = utcnow()
        conditions = [
            BlacklistEntry.expires_at > now,
            func.lower(BlacklistEntry.contact_value).contains(term.strip().lower()),
        ]
        if contact_type is not None:
            conditions.append(BlacklistEntry.contact_type == ContactType(contact_type).value)
        if reason is not None:
            conditions.append(BlacklistEntry.reason == BlacklistReason(reason).value)
        with session_scope() as session:
            entries = (
                session.execute(
                    select(BlacklistEntry)
                    .where(*conditions)
                    .order_by(BlacklistEntry.blacklisted_at.desc(), BlacklistEntry.id.desc())
                    .limit(SEARCH_LIMIT)
                )
                .scalars()
                .all()
            )
            return [_to_view(entry, now) for entry in entries]

    def recent_activity(self, hours: int = 24, limit: int = 50) -> list[BlacklistView]:
        now = utcnow()
        cutoff = now - timedelta(hours=hours)
        with session_scope() as session:
            entries = (
                session.execute(
                    select(BlacklistEntry)
                    .where(BlacklistEntry.blacklisted_at >= cutoff)
                    .order_by(BlacklistEntry.blacklisted_at.desc(), BlacklistEntry.id.desc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [_to_view(entry, now) for entry in entries]

    def stats(self) -> BlacklistStats:
        now = utcnow()
        with session_scope() as session:
            rows = session.execute(
                select(BlacklistEntry.contact_type, BlacklistEntry.reason).where(
                    BlacklistEntry.expires_at > now
                )
            ).all()
        return BlacklistStats(
            total_active=len(rows),
            email_blacklisted=sum(1 for row in rows if row.contact_type == ContactType.EMAIL.value),
            phone_blacklisted=sum(1 for row in rows if row.contact_type == ContactType.PHONE.value),
            max_send_attempts=sum(
                1 for row in rows if row.reason == BlacklistReason.MAX_SEND_ATTEMPTS.value
            ),
            max_verify_attempts=sum(
                1 for row in rows if row.reason == BlacklistReason.MAX_VERIFY_ATTEMPTS.value
            ),
            manual_blocks=sum(
                1 for row in rows if row.reason == BlacklistReason.MANUAL_BLOCK.value
            ),
        )


blacklist_engine = BlacklistEngine(settings.blacklist, settings.fail_open_on_store_error)
