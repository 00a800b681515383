"""Test module for OTP issuance and verification."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import hmac
from types import SimpleNamespace

import pytest
from sqlalchemy import select, update

from gatekeeper.config import OtpPolicy, RateLimitPolicy
from gatekeeper.database import session_scope
from gatekeeper.errors import Blacklisted, InvalidCode, NotFoundOrExpired
from gatekeeper.models.otp import OtpEntry
from gatekeeper.models.user import UserEntry
from gatekeeper.services.otp import generate_code
from gatekeeper.services.timeutil import utcnow


def _wrong(code):
    return "000000" if code != "000000" else "111111"


def _entry(record_id):
    with session_scope() as session:
        return session.get(OtpEntry, record_id)


def test_generate_code_is_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999


def test_issue_creates_live_record_and_user(make_otp_store, email_contact):
    store = make_otp_store()

    issued = store.issue(email_contact)

    entry = _entry(issued.record_id)
    assert entry.contact_value == "user@example.com"
    assert entry.contact_type == "email"
    assert entry.code == issued.code
    assert entry.attempts == 0
    assert entry.is_used is False
    assert entry.resend_count == 0
    with session_scope() as session:
        user = session.get(UserEntry, issued.user_id)
        assert user.email == "user@example.com"
        assert user.is_verified is False


def test_verify_correct_code_marks_record_used(make_otp_store, email_contact):
    store = make_otp_store()
    issued = store.issue(email_contact)

    verified = store.verify(email_contact, issued.code)

    assert verified.record_id == issued.record_id
    assert verified.user_id == issued.user_id
    assert verified.attempts == 1
    entry = _entry(issued.record_id)
    assert entry.is_used is True
    assert entry.verified_at is not None


def test_code_is_single_use(make_otp_store, email_contact):
    store = make_otp_store()
    issued = store.issue(email_contact)
    store.verify(email_contact, issued.code)

    with pytest.raises(NotFoundOrExpired):
        store.verify(email_contact, issued.code)


def test_three_wrong_codes_blacklist_the_contact(make_otp_store, email_contact):
    store = make_otp_store()
    contact = email_contact
    issued = store.issue(contact)
    wrong_codes = [c for c in ("000000", "000001", "000002", "000003") if c != issued.code][:3]

    with pytest.raises(InvalidCode) as first:
        store.verify(contact, wrong_codes[0])
    assert first.value.attempts == 1
    assert first.value.should_blacklist is False

    with pytest.raises(InvalidCode) as second:
        store.verify(contact, wrong_codes[1])
    assert second.value.attempts == 2

    with pytest.raises(InvalidCode) as third:
        store.verify(contact, wrong_codes[2])
    assert third.value.attempts == 3
    assert third.value.should_blacklist is True

    with pytest.raises(Blacklisted) as blocked:
        store.verify(contact, issued.code)
    assert blocked.value.reason == "MAX_VERIFY_ATTEMPTS"


def test_second_request_supersedes_first(make_otp_store, email_contact):
    store = make_otp_store()
    first = store.issue(email_contact)
    second = store.issue(email_contact)

    assert _entry(first.record_id).is_used is True
    assert _entry(second.record_id).is_used is False

    if first.code != second.code:
        with pytest.raises(InvalidCode):
            store.verify(email_contact, first.code)
    verified = store.verify(email_contact, second.code)
    assert verified.record_id == second.record_id


def test_at_most_one_live_record_per_contact(make_otp_store, email_contact, phone_contact):
    store = make_otp_store()
    for _ in range(3):
        store.issue(email_contact)
    store.issue(phone_contact)

    with session_scope() as session:
        live = session.execute(
            select(OtpEntry.contact_value).where(OtpEntry.is_used.is_(False))
        ).scalars().all()
    assert sorted(live) == sorted([email_contact.value, phone_contact.value])


def test_expired_code_is_not_found(make_otp_store, email_contact):
    store = make_otp_store()
    issued = store.issue(email_contact)
    with session_scope() as session:
        session.execute(
            update(OtpEntry)
            .where(OtpEntry.id == issued.record_id)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )

    with pytest.raises(NotFoundOrExpired):
        store.verify(email_contact, issued.code)


def test_verify_without_any_code_is_not_found(make_otp_store, email_contact):
    with pytest.raises(NotFoundOrExpired):
        make_otp_store().verify(email_contact, "123456")


def test_expiry_follows_policy(make_otp_store, email_contact):
    store = make_otp_store(otp_policy=OtpPolicy(expiry_minutes=5))
    before = utcnow()

    issued = store.issue(email_contact)

    assert before + timedelta(minutes=5) <= issued.expires_at
    assert issued.expires_at <= utcnow() + timedelta(minutes=5)


def test_resend_increments_resend_count(make_otp_store, email_contact):
    store = make_otp_store(rate_policy=RateLimitPolicy(resend_min_interval_seconds=0))
    store.issue(email_contact)

    first = store.issue(email_contact, resend=True)
    second = store.issue(email_contact, resend=True)

    assert first.resend_count == 1
    assert second.resend_count == 2


def test_concurrent_wrong_attempts_are_all_counted(make_otp_store, email_contact):
    store = make_otp_store(
        otp_policy=OtpPolicy(max_verify_attempts=10),
        rate_policy=RateLimitPolicy(verify_per_minute=50, verify_per_code=50),
    )
    issued = store.issue(email_contact)
    wrong = _wrong(issued.code)

    def attempt(_):
        with pytest.raises(InvalidCode):
            store.verify(email_contact, wrong)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(attempt, range(4)))

    assert _entry(issued.record_id).attempts == 4


def _interleave(monkeypatch, record_id, **values):
    """Apply ``values`` to the record from another session after the read, before the write."""

    def compare_digest(left, right):
        with session_scope() as session:
            session.execute(update(OtpEntry).where(OtpEntry.id == record_id).values(**values))
        return hmac.compare_digest(left, right)

    monkeypatch.setattr(
        "gatekeeper.services.otp.hmac", SimpleNamespace(compare_digest=compare_digest)
    )


def test_correct_code_rejected_when_exhausted_concurrently(
    make_otp_store, email_contact, monkeypatch
):
    store = make_otp_store()
    issued = store.issue(email_contact)
    _interleave(monkeypatch, issued.record_id, attempts=3)

    with pytest.raises(NotFoundOrExpired):
        store.verify(email_contact, issued.code)

    entry = _entry(issued.record_id)
    assert entry.attempts == 3
    assert entry.is_used is False


def test_correct_code_rejected_when_expired_concurrently(
    make_otp_store, email_contact, monkeypatch
):
    store = make_otp_store()
    issued = store.issue(email_contact)
    _interleave(monkeypatch, issued.record_id, expires_at=utcnow() - timedelta(seconds=1))

    with pytest.raises(NotFoundOrExpired):
        store.verify(email_contact, issued.code)

    assert _entry(issued.record_id).is_used is False
