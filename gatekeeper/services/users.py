from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from gatekeeper.database import session_scope
from gatekeeper.errors import StoreUnavailable
from gatekeeper.models.user import UserEntry, UserProfileEntry
from gatekeeper.schemas.users import ProfileResponse, UserResponse
from gatekeeper.services.contacts import ContactIdentity, ContactType
from gatekeeper.services.timeutil import as_utc, utcnow

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    user: UserResponse
    is_new_user: bool


def _contact_column(contact: ContactIdentity):
    if contact.type is ContactType.EMAIL:
        return UserEntry.email
    return UserEntry.phone


def _find(session: Session, contact: ContactIdentity) -> UserEntry | None:
    return session.execute(
        select(UserEntry).where(_contact_column(contact) == contact.value)
    ).scalar_one_or_none()


def find_or_create(session: Session, contact: ContactIdentity) -> tuple[UserEntry, bool]:
    """Return the user owning ``contact``, creating it inside ``session``."""
    entry = _find(session, contact)
    if entry is not None:
        return entry, True
    now = utcnow()
    entry = UserEntry(
        email=contact.value if contact.type is ContactType.EMAIL else None,
        phone=contact.value if contact.type is ContactType.PHONE else None,
        is_verified=False,
        last_login=None,
        created_at=now,
        updated_at=now,
    )
    session.add(entry)
    session.flush()
    LOGGER.info("Created user %s for %s", entry.id, contact.masked())
    return entry, False


class UserStore:
    def record_login(self, contact: ContactIdentity) -> LoginResult:
        now = utcnow()
        with session_scope() as session:
            entry, _ = find_or_create(session, contact)
            is_new_user = entry.last_login is None
            entry.is_verified = True
            entry.last_login = now
            entry.updated_at = now
            session.flush()
            return LoginResult(user=self._to_response(entry), is_new_user=is_new_user)

    def get_user(self, user_id: int) -> UserResponse | None:
        with session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return self._to_response(entry)

    def get_profile(self, user_id: int) -> ProfileResponse | None:
        with session_scope() as session:
            entry = session.get(UserProfileEntry, user_id)
            if entry is None:
                return None
            return ProfileResponse(
                user_id=entry.user_id,
                full_name=entry.full_name,
                onboarding_completed=bool(entry.onboarding_completed),
            )

    def is_onboarded(self, user_id: int) -> bool:
        try:
            profile = self.get_profile(user_id)
        except StoreUnavailable:
            LOGGER.error("Profile lookup failed for user %s", user_id)
            return False
        return bool(profile and profile.onboarding_completed)

    def _to_response(self, entry: UserEntry) -> UserResponse:
        return UserResponse(
            id=entry.id,
            email=entry.email,
            phone=entry.phone,
            is_verified=bool(entry.is_verified),
            last_login=as_utc(entry.last_login),
            created_at=as_utc(entry.created_at),
        )


user_store = UserStore()
