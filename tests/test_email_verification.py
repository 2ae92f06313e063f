"""Tests for email verification."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from finvault.core.errors import TokenInvalid, ValidationError

from conftest import PASSWORD


@pytest.fixture
def account(credentials):
    return credentials.register("Ana Souza", "ana@example.com", PASSWORD)


class TestVerificationFlow:

    def test_marks_email_verified(self, verification, account, user_store):
        user = verification.verify_email(account.verification_token)

        assert user.id == account.user["id"]
        assert user.email_verified is True
        assert user_store.find_by_id(user.id).verification_token is None

    def test_token_is_single_use(self, verification, account):
        verification.verify_email(account.verification_token)

        with pytest.raises(TokenInvalid):
            verification.verify_email(account.verification_token)

    def test_unknown_token(self, verification):
        with pytest.raises(TokenInvalid):
            verification.verify_email("ab" * 32)

    def test_malformed_token(self, verification):
        with pytest.raises(ValidationError):
            verification.verify_email("short")

    def test_concurrent_redemption_has_one_winner(self, verification, account):
        def attempt(n):
            try:
                verification.verify_email(account.verification_token)
                return "ok"
            except TokenInvalid:
                return "invalid"

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(attempt, range(6)))

        assert results.count("ok") == 1

    def test_verified_claim_in_next_token(self, verification, credentials, tokens, account):
        verification.verify_email(account.verification_token)

        result = credentials.login("ana@example.com", PASSWORD)

        assert tokens.verify(result.token)["email_verified"] is True
