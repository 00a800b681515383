from datetime import timedelta
import logging
import secrets
from typing import Optional

from sqlalchemy import delete, select

from gatekeeper.config import SessionPolicy, settings
from gatekeeper.database import session_scope
from gatekeeper.models.refresh_token import RefreshTokenEntry
from gatekeeper.services.timeutil import utcnow

LOGGER = logging.getLogger(__name__)

DEVICE_INFO_MAX_LENGTH = 255


class RefreshTokenStore:
    """Opaque, server-tracked refresh tokens."""

    def __init__(self, policy: SessionPolicy) -> None:
        self._policy = policy

    @property
    def ttl_seconds(self) -> int:
        return self._policy.refresh_token_expire_days * 86400

    def issue(self, user_id: int, device_info: Optional[str] = None) -> str:
        now = utcnow()
        token = secrets.token_urlsafe(32)
        expires_at = now + timedelta(days=self._policy.refresh_token_expire_days)
        with session_scope() as session:
            session.add(
                RefreshTokenEntry(
                    token=token,
                    user_id=user_id,
                    created_at=now,
                    expires_at=expires_at,
                    device_info=device_info[:DEVICE_INFO_MAX_LENGTH]
                    if device_info
                    else None,
                )
            )
        return token

    def lookup(self, token: str) -> int | None:
        if not token:
            return None
        now = utcnow()
        with session_scope() as session:
            return session.execute(
                select(RefreshTokenEntry.user_id).where(
                    RefreshTokenEntry.token == token,
                    RefreshTokenEntry.expires_at > now,
                )
            ).scalar_one_or_none()

    def revoke_one(self, token: str, user_id: Optional[int] = None) -> bool:
        conditions = [RefreshTokenEntry.token == token]
        if user_id is not None:
            conditions.append(RefreshTokenEntry.user_id == user_id)
        with session_scope() as session:
            result = session.execute(delete(RefreshTokenEntry).where(*conditions))
            return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        with session_scope() as session:
            result = session.execute(
                delete(RefreshTokenEntry).where(RefreshTokenEntry.user_id == user_id)
            )
            revoked = result.rowcount or 0
        LOGGER.info("Revoked %s refresh tokens for user %s", revoked, user_id)
        return revoked


refresh_tokens = RefreshTokenStore(settings.session)
