"""Shared fixtures: every test gets its own SQLite database."""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["SESSION_SECRET"] = "test-session-secret-with-enough-entropy"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["OTP_DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from gatekeeper import database
from gatekeeper.config import BlacklistPolicy, OtpPolicy, RateLimitPolicy
from gatekeeper.services.blacklist import BlacklistEngine
from gatekeeper.services.contacts import ContactIdentity
from gatekeeper.services.otp import OtpStore
from gatekeeper.services.rate_limiter import RateLimiter


@pytest.fixture(autouse=True)
def test_db(tmp_path):
    """Bind the session factory to a fresh database file."""
    engine = database.configure(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_db()
    yield engine
    engine.dispose()


@pytest.fixture()
def email_contact():
    return ContactIdentity.parse("user@example.com", "email")


@pytest.fixture()
def phone_contact():
    return ContactIdentity.parse("+237 123 456 789", "phone")


@pytest.fixture()
def make_otp_store():
    """Build an OtpStore with explicit policies."""

    def _make(otp_policy=None, blacklist_policy=None, rate_policy=None, fail_open=True):
        blacklist = BlacklistEngine(blacklist_policy or BlacklistPolicy(), fail_open)
        limiter = RateLimiter(rate_policy or RateLimitPolicy(), fail_open)
        return OtpStore(otp_policy or OtpPolicy(), blacklist, limiter)

    return _make
