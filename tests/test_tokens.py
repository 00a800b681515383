"""Test module for signed session tokens."""

from datetime import timedelta

import pytest

from gatekeeper.config import SessionPolicy
from gatekeeper.schemas.users import UserResponse
from gatekeeper.services.timeutil import utcnow
from gatekeeper.services.tokens import SessionTokens, TokenError, TokenSigner

SECRET = "unit-test-secret-with-enough-entropy"


@pytest.fixture()
def tokens():
    return SessionTokens(SessionPolicy(secret=SECRET, session_ttl_seconds=3600))


@pytest.fixture()
def user():
    return UserResponse(
        id=42,
        email="user@example.com",
        phone=None,
        is_verified=True,
        created_at=utcnow(),
    )


def test_session_token_round_trip(tokens, user):
    claims = tokens.decode(tokens.create(user))

    assert claims.user_id == 42
    assert claims.email == "user@example.com"
    assert claims.phone is None
    assert claims.is_verified is True
    assert claims.expires_at - claims.issued_at == timedelta(seconds=3600)


def test_tampered_token_is_rejected(tokens, user):
    token = tokens.create(user)
    header, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

    with pytest.raises(TokenError):
        tokens.decode(".".join([header, payload, flipped]))


def test_token_signed_with_other_secret_is_rejected(tokens, user):
    other = SessionTokens(SessionPolicy(secret="another-secret-with-enough-entropy"))

    with pytest.raises(TokenError):
        tokens.decode(other.create(user))


def test_expired_token_is_rejected(tokens, user):
    token = tokens.create(user, now=utcnow() - timedelta(hours=2))

    with pytest.raises(TokenError, match="expired"):
        tokens.decode(token)


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
def test_malformed_token_is_rejected(tokens, token):
    with pytest.raises(TokenError):
        tokens.decode(token)


def test_wrong_token_type_is_rejected(tokens):
    now = int(utcnow().timestamp())
    token = TokenSigner(SECRET).sign(
        {"sub": "1", "type": "refresh", "iat": now, "exp": now + 60}
    )

    with pytest.raises(TokenError, match="type"):
        tokens.decode(token)


def test_missing_secret_refuses_to_sign(user):
    with pytest.raises(TokenError):
        SessionTokens(SessionPolicy(secret="")).create(user)


def test_signer_requires_subject():
    now = int(utcnow().timestamp())
    signer = TokenSigner(SECRET)
    token = signer.sign({"iat": now, "exp": now + 60})

    with pytest.raises(TokenError):
        signer.verify(token)
