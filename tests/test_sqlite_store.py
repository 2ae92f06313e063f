"""Tests for the SQLite credential and session stores."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from finvault.core.errors import DuplicateKeyError, OperationCancelled
from finvault.core.models import Session
from finvault.db.base import CancelToken, SessionStore, UserStore


class CancelAtCommit(CancelToken):
    """Fires on the second check, i.e. after the statement ran but before COMMIT."""

    def __init__(self):
        super().__init__()
        self.checks = 0

    def raise_if_cancelled(self):
        self.checks += 1
        if self.checks >= 2:
            self.cancel("client went away")
        super().raise_if_cancelled()


def new_user(store, email="ana@example.com", **extra):
    record = {"name": "Ana", "email": email, "password_hash": "$argon2id$placeholder", **extra}
    return store.insert(record)


def new_session(store, clock, user_id=1, token="tok-1", session_id="s-1", **extra):
    now = clock()
    return store.insert(Session(
        id=session_id,
        user_id=user_id,
        token=token,
        created_at=now,
        expires_at=now + timedelta(hours=24),
        **extra,
    ))


class TestSQLiteUserStore:

    def test_satisfies_protocol(self, user_store):
        assert isinstance(user_store, UserStore)

    def test_insert_and_find(self, user_store, clock):
        user = new_user(user_store, verification_token="ab" * 32)

        assert user.id > 0
        assert user.created_at == clock()
        assert user.email_verified is False
        assert user.is_active is True
        assert user_store.find_by_email("ana@example.com").id == user.id
        assert user_store.find_by_id(user.id).email == "ana@example.com"
        assert user_store.find_by_verification_token("ab" * 32).id == user.id
        assert user_store.find_by_email("nobody@example.com") is None

    def test_duplicate_email_rejected(self, user_store):
        new_user(user_store)

        with pytest.raises(DuplicateKeyError):
            new_user(user_store)

    def test_unknown_columns_rejected(self, user_store):
        user = new_user(user_store)

        with pytest.raises(ValueError):
            user_store.update(user.id, {"role": "admin"})
        with pytest.raises(ValueError):
            user_store.insert({"name": "X", "email": "x@example.com", "password_hash": "h", "id": 9})

    def test_update_stamps_updated_at(self, user_store, clock):
        user = new_user(user_store)
        clock.advance(minutes=5)

        updated = user_store.update(user.id, {"name": "Ana Maria"})

        assert updated.name == "Ana Maria"
        assert updated.updated_at == clock()
        assert updated.created_at == user.created_at

    def test_update_missing_user_returns_none(self, user_store):
        assert user_store.update(999, {"name": "Ghost"}) is None

    def test_concurrent_increments_are_not_lost(self, user_store):
        user = new_user(user_store)

        with ThreadPoolExecutor(max_workers=10) as pool:
            counts = list(pool.map(lambda _: user_store.increment_failed_attempts(user.id), range(20)))

        assert sorted(counts) == list(range(1, 21))
        assert user_store.find_by_id(user.id).failed_attempts == 20

    def test_cas_lock_engages_once(self, user_store, clock):
        user = new_user(user_store)
        now = clock()
        until = now + timedelta(minutes=15)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda _: user_store.cas_set_lock(user.id, until, now), range(10)))

        assert results.count(True) == 1
        assert user_store.find_by_id(user.id).locked_until == until

    def test_cas_lock_succeeds_after_previous_lock_elapsed(self, user_store, clock):
        user = new_user(user_store)
        now = clock()
        assert user_store.cas_set_lock(user.id, now + timedelta(minutes=15), now)

        later = now + timedelta(minutes=16)
        assert user_store.cas_set_lock(user.id, later + timedelta(minutes=15), later)

    def test_update_if_unlocked_refuses_locked_account(self, user_store, clock):
        user = new_user(user_store)
        now = clock()
        user_store.increment_failed_attempts(user.id)
        user_store.cas_set_lock(user.id, now + timedelta(minutes=15), now)

        assert user_store.update_if_unlocked(user.id, {"failed_attempts": 0}, now) is None
        assert user_store.find_by_id(user.id).failed_attempts == 1

        later = now + timedelta(minutes=15)
        cleared = user_store.update_if_unlocked(
            user.id, {"failed_attempts": 0, "locked_until": None}, later
        )
        assert cleared.failed_attempts == 0
        assert cleared.locked_until is None

    def test_redeem_reset_token_is_single_use(self, user_store, clock):
        user = new_user(user_store, email="bia@example.com")
        token = "cd" * 32
        user_store.update(user.id, {
            "reset_token": token,
            "reset_token_expires": clock() + timedelta(hours=1),
            "failed_attempts": 4,
        })

        redeemed = user_store.redeem_reset_token(token, "$argon2id$new", clock())

        assert redeemed.password_hash == "$argon2id$new"
        assert redeemed.reset_token is None
        assert redeemed.failed_attempts == 0
        assert user_store.redeem_reset_token(token, "$argon2id$other", clock()) is None

    def test_redeem_reset_token_respects_expiry(self, user_store, clock):
        user = new_user(user_store)
        token = "ef" * 32
        user_store.update(user.id, {"reset_token": token, "reset_token_expires": clock()})

        assert user_store.redeem_reset_token(token, "h", clock() + timedelta(seconds=1)) is None

    def test_redeem_verification_token(self, user_store):
        user = new_user(user_store, verification_token="12" * 32)

        verified = user_store.redeem_verification_token("12" * 32)

        assert verified.id == user.id
        assert verified.email_verified is True
        assert verified.verification_token is None
        assert user_store.redeem_verification_token("12" * 32) is None

    def test_cancelled_before_start_writes_nothing(self, user_store):
        cancel = CancelToken()
        cancel.cancel("shutdown")

        with pytest.raises(OperationCancelled):
            user_store.insert(
                {"name": "Ana", "email": "ana@example.com", "password_hash": "h"},
                cancel=cancel,
            )

        assert user_store.find_by_email("ana@example.com") is None

    def test_cancelled_before_commit_rolls_back(self, user_store):
        user = new_user(user_store)

        with pytest.raises(OperationCancelled):
            user_store.increment_failed_attempts(user.id, cancel=CancelAtCommit())

        assert user_store.find_by_id(user.id).failed_attempts == 0


class TestSQLiteSessionStore:

    def test_satisfies_protocol(self, session_store):
        assert isinstance(session_store, SessionStore)

    def test_insert_and_find(self, session_store, clock):
        session = new_session(session_store, clock, ip_address="10.0.0.1", device="mobile")

        found = session_store.find_by_token("tok-1")
        assert found.id == session.id
        assert found.ip_address == "10.0.0.1"
        assert found.device == "mobile"
        assert found.expires_at == session.expires_at
        assert session_store.find_by_id("s-1").token == "tok-1"
        assert session_store.find_by_token("missing") is None

    def test_duplicate_token_rejected(self, session_store, clock):
        new_session(session_store, clock)

        with pytest.raises(DuplicateKeyError):
            new_session(session_store, clock, session_id="s-2")

    def test_set_active_is_idempotent(self, session_store, clock):
        new_session(session_store, clock)

        assert session_store.set_active("tok-1", False) == 1
        assert session_store.set_active("tok-1", False) == 0
        assert session_store.find_by_token("tok-1").active is False

    def test_set_active_scoped_to_user(self, session_store, clock):
        new_session(session_store, clock, user_id=1)

        assert session_store.set_active("tok-1", False, user_id=2) == 0
        assert session_store.find_by_token("tok-1").active is True

    def test_reactivation_rejected(self, session_store, clock):
        new_session(session_store, clock)
        session_store.set_active("tok-1", False)

        with pytest.raises(ValueError):
            session_store.set_active("tok-1", True)
        with pytest.raises(ValueError):
            session_store.set_active_all_for_user(1, True)

    def test_set_active_all_except_current(self, session_store, clock):
        for n in range(3):
            new_session(session_store, clock, token=f"tok-{n}", session_id=f"s-{n}")
        new_session(session_store, clock, user_id=2, token="other", session_id="s-other")

        assert session_store.set_active_all_for_user(1, False, except_token="tok-0") == 2
        assert session_store.find_by_token("tok-0").active is True
        assert session_store.find_by_token("other").active is True

    def test_set_active_by_id_requires_owner(self, session_store, clock):
        new_session(session_store, clock, user_id=1)

        assert session_store.set_active_by_id("s-1", 2, False) == 0
        assert session_store.set_active_by_id("s-1", 1, False) == 1

    def test_list_active_newest_first(self, session_store, clock):
        new_session(session_store, clock, token="old", session_id="s-old")
        clock.advance(hours=1)
        new_session(session_store, clock, token="new", session_id="s-new")
        new_session(session_store, clock, token="revoked", session_id="s-revoked")
        session_store.set_active("revoked", False)

        listed = session_store.list_active_for_user(1, clock())
        assert [s.id for s in listed] == ["s-new", "s-old"]

        # s-old expires 24h after creation
        listed = session_store.list_active_for_user(1, clock() + timedelta(hours=23, minutes=30))
        assert [s.id for s in listed] == ["s-new"]
