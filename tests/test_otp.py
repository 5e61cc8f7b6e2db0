"""OtpStore: keyed issuance, expiry and single use."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

import learnhub.models as models
from learnhub.otp import OtpStore, generate_code

from conftest import make_user


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime(2025, 7, 19, 9, 0, 0))


@pytest.fixture
def store(db, clock):
    return OtpStore(db, ttl=timedelta(minutes=10), clock=clock)


@pytest.fixture
def user(db):
    return make_user(db, "otp@x.com", verified=False)


def rows(db, user_id):
    return db.query(models.EmailOtp).filter(models.EmailOtp.user_id == user_id).all()


def test_generate_code_is_four_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 4 and code.isdigit()


def test_issue_sets_ten_minute_expiry(db, store, user, clock):
    code = store.issue(user.id, models.OtpPurpose.register)

    (record,) = rows(db, user.id)
    assert record.code == code
    assert record.expires_at == clock.now + timedelta(minutes=10)


def test_reissue_replaces_previous_code(db, store, user, monkeypatch):
    codes = iter(["1111", "2222"])
    monkeypatch.setattr("learnhub.otp.generate_code", lambda: next(codes))

    first = store.issue(user.id, models.OtpPurpose.register)
    second = store.issue(user.id, models.OtpPurpose.register)

    assert len(rows(db, user.id)) == 1
    assert store.verify(user.id, models.OtpPurpose.register, first) is False
    assert store.verify(user.id, models.OtpPurpose.register, second) is True


def test_purposes_are_independent(db, store, user):
    register = store.issue(user.id, models.OtpPurpose.register)
    forgot = store.issue(user.id, models.OtpPurpose.forgot_password)

    assert len(rows(db, user.id)) == 2
    assert store.verify(user.id, models.OtpPurpose.forgot_password, forgot) is True
    assert store.verify(user.id, models.OtpPurpose.register, register) is True


def test_code_for_other_purpose_is_rejected(store, user, monkeypatch):
    monkeypatch.setattr("learnhub.otp.generate_code", lambda: "4321")
    store.issue(user.id, models.OtpPurpose.register)

    assert store.verify(user.id, models.OtpPurpose.forgot_password, "4321") is False


def test_expired_code_fails_even_when_digits_match(db, store, user, clock):
    code = store.issue(user.id, models.OtpPurpose.register)
    clock.advance(minutes=10)

    assert store.verify(user.id, models.OtpPurpose.register, code) is False
    # Failed verification leaves the record untouched
    assert len(rows(db, user.id)) == 1


def test_code_valid_just_before_expiry(store, user, clock):
    code = store.issue(user.id, models.OtpPurpose.register)
    clock.advance(minutes=9, seconds=59)

    assert store.verify(user.id, models.OtpPurpose.register, code) is True


def test_wrong_code_does_not_consume_record(db, store, user, monkeypatch):
    monkeypatch.setattr("learnhub.otp.generate_code", lambda: "0420")
    store.issue(user.id, models.OtpPurpose.register)

    assert store.verify(user.id, models.OtpPurpose.register, "0421") is False
    assert store.verify(user.id, models.OtpPurpose.register, "420") is False
    assert store.verify(user.id, models.OtpPurpose.register, "0420") is True


def test_successful_verify_is_single_use(db, store, user):
    code = store.issue(user.id, models.OtpPurpose.register)

    assert store.verify(user.id, models.OtpPurpose.register, code) is True
    assert rows(db, user.id) == []
    assert store.verify(user.id, models.OtpPurpose.register, code) is False


def test_verify_without_record(store, user):
    assert store.verify(user.id, models.OtpPurpose.register, "0000") is False


def test_concurrent_issue_overwrites_the_winning_row(db, store, user, monkeypatch):
    codes = iter(["1111", "2222"])
    monkeypatch.setattr("learnhub.otp.generate_code", lambda: next(codes))
    store.issue(user.id, models.OtpPurpose.register)

    # The second issue looks before the first row is visible, then hits the unique key on insert
    real_get = store._get
    calls = []

    def stale_get(user_id, purpose):
        calls.append(purpose)
        return None if len(calls) == 1 else real_get(user_id, purpose)

    monkeypatch.setattr(store, "_get", stale_get)

    code = store.issue(user.id, models.OtpPurpose.register)

    assert code == "2222"
    assert len(rows(db, user.id)) == 1
    assert store.verify(user.id, models.OtpPurpose.register, "1111") is False
    assert store.verify(user.id, models.OtpPurpose.register, "2222") is True


def test_integrity_error_without_a_row_to_overwrite_propagates(db, store, user, monkeypatch):
    store.issue(user.id, models.OtpPurpose.register)
    monkeypatch.setattr(store, "_get", lambda *key: None)

    with pytest.raises(IntegrityError):
        store.issue(user.id, models.OtpPurpose.register)

    assert len(rows(db, user.id)) == 1
