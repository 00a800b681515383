"""Session issuance after a successful OTP verification.

Session tokens are stateless and expire on their own; refresh tokens are
tracked in the store and are what logout revokes.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from gatekeeper.config import SessionPolicy, settings
from gatekeeper.errors import StoreUnavailable
from gatekeeper.schemas.users import ProfileResponse, UserResponse
from gatekeeper.services.contacts import ContactIdentity
from gatekeeper.services.sessions import RefreshTokenStore, refresh_tokens
from gatekeeper.services.tokens import SessionTokens, TokenError, session_tokens
from gatekeeper.services.users import UserStore, user_store

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionBundle:
    session_token: str
    refresh_token: str
    user: UserResponse
    is_new_user: bool
    redirect_to: str


@dataclass(frozen=True)
class SessionValidation:
    valid: bool
    user: Optional[UserResponse] = None
    profile: Optional[ProfileResponse] = None
    error: Optional[str] = None


class SessionIssuer:
    def __init__(
        self,
        policy: SessionPolicy,
        users: UserStore,
        tokens: SessionTokens,
        refresh_store: RefreshTokenStore,
    ) -> None:
        self._policy = policy
        self._users = users
        self._tokens = tokens
        self._refresh_store = refresh_store

    def login(
        self, contact: ContactIdentity, device_info: Optional[str] = None
    ) -> SessionBundle:
        result = self._users.record_login(contact)
        session_token = self._tokens.create(result.user)
        refresh_token = self._refresh_store.issue(result.user.id, device_info)
        redirect_to = self._redirect_for(result.user.id, result.is_new_user)
        LOGGER.info(
            "Session issued for user %s (new=%s)", result.user.id, result.is_new_user
        )
        return SessionBundle(
            session_token=session_token,
            refresh_token=refresh_token,
            user=result.user,
            is_new_user=result.is_new_user,
            redirect_to=redirect_to,
        )

    def validate_session(self, token: str) -> SessionValidation:
        try:
            claims = self._tokens.decode(token)
        except TokenError as exc:
            return SessionValidation(valid=False, error=str(exc))
        user = self._users.get_user(claims.user_id)
        if user is None:
            return SessionValidation(valid=False, error="User not found")
        try:
            profile = self._users.get_profile(user.id)
        except StoreUnavailable:
            LOGGER.error("Profile lookup failed for user %s", user.id)
            profile = None
        return SessionValidation(valid=True, user=user, profile=profile)

    def refresh(self, refresh_token: str) -> tuple[str, UserResponse]:
        user_id = self._refresh_store.lookup(refresh_token)
        if user_id is None:
            raise TokenError("Refresh token not found or expired")
        user = self._users.get_user(user_id)
        if user is None:
            raise TokenError("User not found")
        return self._tokens.create(user), user

    def logout(self, user_id: int, refresh_token: Optional[str] = None) -> int:
        if refresh_token:
            return int(self._refresh_store.revoke_one(refresh_token, user_id))
        return self._refresh_store.revoke_all(user_id)

    def _redirect_for(self, user_id: int, is_new_user: bool) -> str:
        if not is_new_user and self._users.is_onboarded(user_id):
            return self._policy.home_path
        return self._policy.onboarding_path


session_issuer = SessionIssuer(settings.session, user_store, session_tokens, refresh_tokens)
