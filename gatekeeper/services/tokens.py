from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from gatekeeper.config import SessionPolicy, settings
from gatekeeper.schemas.users import UserResponse
from gatekeeper.services.timeutil import utcnow

SESSION_TOKEN_TYPE = "session"


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class SessionClaims:
    user_id: int
    email: Optional[str]
    phone: Optional[str]
    is_verified: bool
    issued_at: datetime
    expires_at: datetime


class TokenSigner:
    """Signs and verifies claim sets with a keyed MAC (HS256 by default)."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def sign(self, claims: dict[str, Any]) -> str:
        if not self._secret:
            raise TokenError("Session secret is not configured")
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        if not token:
            raise TokenError("Token is missing")
        if not self._secret:
            raise TokenError("Session secret is not configured")
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Invalid token") from exc


class SessionTokens:
    def __init__(self, policy: SessionPolicy) -> None:
        self._policy = policy
        self._signer = TokenSigner(policy.secret, policy.algorithm)

    @property
    def ttl_seconds(self) -> int:
        return self._policy.session_ttl_seconds

    def create(self, user: UserResponse, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        expires_at = now + timedelta(seconds=self._policy.session_ttl_seconds)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "phone": user.phone,
            "is_verified": user.is_verified,
            "type": SESSION_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return self._signer.sign(payload)

    def decode(self, token: str) -> SessionClaims:
        payload = self._signer.verify(token)
        if payload.get("type") != SESSION_TOKEN_TYPE:
            raise TokenError("Invalid token type")
        return SessionClaims(
            user_id=_parse_subject(payload),
            email=payload.get("email"),
            phone=payload.get("phone"),
            is_verified=bool(payload.get("is_verified")),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


def _parse_subject(payload: dict) -> int:
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token subject is missing")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise TokenError("Invalid token subject") from exc


session_tokens = SessionTokens(settings.session)
