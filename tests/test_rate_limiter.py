"""Test module for sliding-window rate limits."""

from datetime import timedelta

import pytest

from gatekeeper import database
from gatekeeper.config import RateLimitPolicy
from gatekeeper.errors import StoreUnavailable
from gatekeeper.models.otp import OtpEntry
from gatekeeper.services.rate_limiter import RateLimiter
from gatekeeper.services.timeutil import utcnow


def _seed(contact, age, attempts=0, is_used=True, resend_count=0, lifetime=timedelta(minutes=10)):
    created_at = utcnow() - age
    with database.session_scope() as session:
        session.add(
            OtpEntry(
                contact_value=contact.value,
                contact_type=contact.type.value,
                code="123456",
                created_at=created_at,
                expires_at=created_at + lifetime,
                attempts=attempts,
                is_used=is_used,
                resend_count=resend_count,
            )
        )


def test_send_allowed_reports_remaining(email_contact):
    limiter = RateLimiter(RateLimitPolicy(send_per_minute=3, send_per_hour=10, send_per_day=20))
    _seed(email_contact, timedelta(seconds=10))

    result = limiter.check_send(email_contact)

    assert result.allowed is True
    assert result.remaining == 2


def test_send_denied_per_minute(email_contact):
    limiter = RateLimiter(RateLimitPolicy(send_per_minute=2))
    _seed(email_contact, timedelta(seconds=30))
    _seed(email_contact, timedelta(seconds=5))

    result = limiter.check_send(email_contact)

    assert result.allowed is False
    assert "per minute" in result.reason
    assert 1 <= result.retry_after_seconds <= 31
    assert result.remaining == 0


def test_send_denied_per_hour(email_contact):
    limiter = RateLimiter(RateLimitPolicy(send_per_minute=5, send_per_hour=2))
    _seed(email_contact, timedelta(minutes=50))
    _seed(email_contact, timedelta(minutes=10))

    result = limiter.check_send(email_contact)

    assert result.allowed is False
    assert "per hour" in result.reason
    assert 9 * 60 <= result.retry_after_seconds <= 10 * 60 + 1


def test_send_ignores_records_outside_every_window(email_contact):
    limiter = RateLimiter(RateLimitPolicy(send_per_minute=1, send_per_hour=1, send_per_day=1))
    _seed(email_contact, timedelta(days=1, minutes=1))

    assert limiter.check_send(email_contact).allowed is True


def test_send_windows_are_per_contact(email_contact, phone_contact):
    limiter = RateLimiter(RateLimitPolicy(send_per_minute=1))
    _seed(email_contact, timedelta(seconds=5))

    assert limiter.check_send(email_contact).allowed is False
    assert limiter.check_send(phone_contact).allowed is True


def test_verify_denied_after_too_many_recent_attempts(email_contact):
    limiter = RateLimiter(RateLimitPolicy(verify_per_minute=5, verify_per_code=10))
    _seed(email_contact, timedelta(seconds=20), attempts=3)
    _seed(email_contact, timedelta(seconds=10), attempts=2, is_used=False)

    result = limiter.check_verify(email_contact)

    assert result.allowed is False
    assert "per minute" in result.reason


def test_verify_denied_when_active_code_is_exhausted(email_contact):
    limiter = RateLimiter(RateLimitPolicy(verify_per_minute=50, verify_per_code=3))
    _seed(email_contact, timedelta(minutes=2), attempts=3, is_used=False)

    result = limiter.check_verify(email_contact)

    assert result.allowed is False
    assert "this code" in result.reason


def test_verify_allowed_reports_remaining(email_contact):
    limiter = RateLimiter(RateLimitPolicy(verify_per_minute=5, verify_per_code=3))
    _seed(email_contact, timedelta(seconds=5), attempts=1, is_used=False)

    result = limiter.check_verify(email_contact)

    assert result.allowed is True
    assert result.remaining == 2


def test_resend_requires_minimum_interval(email_contact):
    limiter = RateLimiter(RateLimitPolicy(resend_min_interval_seconds=60))
    _seed(email_contact, timedelta(seconds=15), is_used=False)

    result = limiter.check_resend(email_contact)

    assert result.allowed is False
    assert 44 <= result.retry_after_seconds <= 46


def test_resend_capped_per_hour(email_contact):
    limiter = RateLimiter(RateLimitPolicy(resend_min_interval_seconds=60, resend_max_per_hour=2))
    _seed(email_contact, timedelta(minutes=30), resend_count=1)
    _seed(email_contact, timedelta(minutes=20), resend_count=2, is_used=False)

    result = limiter.check_resend(email_contact)

    assert result.allowed is False
    assert "per hour" in result.reason


def test_resend_allowed_after_interval(email_contact):
    limiter = RateLimiter(RateLimitPolicy(resend_min_interval_seconds=60, resend_max_per_hour=3))
    _seed(email_contact, timedelta(minutes=2), is_used=False)

    result = limiter.check_resend(email_contact)

    assert result.allowed is True
    assert result.remaining == 3


def test_checks_fail_open_when_store_is_down(tmp_path, email_contact):
    database.configure(f"sqlite:///{tmp_path / 'empty.db'}")
    limiter = RateLimiter(RateLimitPolicy(), fail_open_on_store_error=True)

    assert limiter.check_send(email_contact).allowed is True
    assert limiter.check_verify(email_contact).allowed is True
    assert limiter.check_resend(email_contact).allowed is True


def test_checks_fail_closed_when_configured(tmp_path, email_contact):
    database.configure(f"sqlite:///{tmp_path / 'empty.db'}")
    limiter = RateLimiter(RateLimitPolicy(), fail_open_on_store_error=False)

    with pytest.raises(StoreUnavailable):
        limiter.check_send(email_contact)
