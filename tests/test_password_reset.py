"""Tests for the password reset flow."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from finvault.core.auth.password_reset import ResetFlow
from finvault.core.errors import (
    InvalidCredentials,
    SessionInvalid,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)

from conftest import NEW_PASSWORD, PASSWORD


@pytest.fixture
def account(credentials):
    return credentials.register("Ana Souza", "ana@example.com", PASSWORD)


class TestRequestReset:

    def test_issues_token_for_registered_email(self, resets, account, delivery, user_store, clock):
        user = resets.request_reset("ANA@example.com")
        stored = user_store.find_by_id(account.user["id"])

        assert user.id == account.user["id"]
        assert delivery.sent == [(user.id, stored.reset_token)]
        assert len(stored.reset_token) == 64
        assert (stored.reset_token_expires - clock()).total_seconds() == 3600

    def test_unknown_email_issues_nothing(self, resets, delivery):
        assert resets.request_reset("nobody@example.com") is None
        assert delivery.sent == []

    def test_new_request_replaces_previous_token(self, resets, account, delivery):
        resets.request_reset("ana@example.com")
        first = delivery.last_token
        resets.request_reset("ana@example.com")

        with pytest.raises(TokenInvalid):
            resets.confirm_reset(first, NEW_PASSWORD)

    def test_delivery_failure_does_not_propagate(self, user_store, hasher, sessions, account, clock):
        def broken(user, token):
            raise ConnectionError("smtp down")

        flow = ResetFlow(user_store, hasher, sessions, deliver=broken, clock=clock)

        assert flow.request_reset("ana@example.com").id == account.user["id"]


class TestConfirmReset:

    def test_sets_password_and_revokes_sessions(self, resets, credentials, sessions, account, delivery):
        active = credentials.login("ana@example.com", PASSWORD)
        resets.request_reset("ana@example.com")

        confirmation = resets.confirm_reset(delivery.last_token, NEW_PASSWORD)

        assert confirmation.user_id == account.user["id"]
        assert confirmation.sessions_revoked == 1
        with pytest.raises(SessionInvalid):
            sessions.validate_session(active.token)
        assert credentials.login("ana@example.com", NEW_PASSWORD).token

    def test_token_is_single_use(self, resets, account, delivery):
        resets.request_reset("ana@example.com")
        token = delivery.last_token
        resets.confirm_reset(token, NEW_PASSWORD)

        with pytest.raises(TokenInvalid):
            resets.confirm_reset(token, "An0ther!pass")

    def test_concurrent_redemption_has_one_winner(self, resets, account, delivery):
        resets.request_reset("ana@example.com")
        token = delivery.last_token

        def attempt(n):
            try:
                resets.confirm_reset(token, f"N3w!password{n}")
                return "ok"
            except TokenInvalid:
                return "invalid"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count("ok") == 1
        assert results.count("invalid") == 7

    def test_expired_after_one_hour(self, resets, account, delivery, clock):
        resets.request_reset("ana@example.com")
        clock.advance(hours=1, seconds=1)

        with pytest.raises(TokenExpired):
            resets.confirm_reset(delivery.last_token, NEW_PASSWORD)

    def test_valid_at_exactly_one_hour(self, resets, account, delivery, clock):
        resets.request_reset("ana@example.com")
        clock.advance(hours=1)

        assert resets.confirm_reset(delivery.last_token, NEW_PASSWORD).user_id == account.user["id"]

    def test_unknown_token(self, resets):
        with pytest.raises(TokenInvalid):
            resets.confirm_reset("ab" * 32, NEW_PASSWORD)

    def test_malformed_token_and_weak_password(self, resets):
        with pytest.raises(ValidationError):
            resets.confirm_reset("not hex!", NEW_PASSWORD)
        with pytest.raises(ValidationError):
            resets.confirm_reset("ab" * 32, "weak")

    def test_clears_lockout(self, resets, credentials, account, delivery, user_store):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                credentials.login("ana@example.com", "Wr0ng!pass")
        resets.request_reset("ana@example.com")

        resets.confirm_reset(delivery.last_token, NEW_PASSWORD)
        stored = user_store.find_by_id(account.user["id"])

        assert stored.failed_attempts == 0
        assert stored.locked_until is None
        assert credentials.login("ana@example.com", NEW_PASSWORD).token
