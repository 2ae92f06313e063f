"""Tests for bearer token issuance and verification."""

from datetime import timedelta

import jwt
import pytest

from finvault.core.auth.tokens import REQUIRED_CLAIMS, TokenService
from finvault.core.errors import TokenExpired, TokenInvalid
from finvault.core.models import User

from conftest import SECRET


@pytest.fixture
def user(clock):
    return User(
        id=7,
        name="Ana Souza",
        email="ana@example.com",
        password_hash="$argon2id$placeholder",
        created_at=clock(),
        updated_at=clock(),
    )


class TestTokenService:

    def test_claims_round_trip(self, tokens, user, clock):
        claims = tokens.verify(tokens.issue(user))
        now = int(clock().timestamp())

        assert claims["sub"] == 7
        assert claims["email"] == "ana@example.com"
        assert claims["name"] == "Ana Souza"
        assert claims["email_verified"] is False
        assert claims["iat"] == now
        assert claims["exp"] == now + 24 * 3600
        assert set(REQUIRED_CLAIMS) <= set(claims)

    def test_tokens_for_same_user_are_distinct(self, tokens, user):
        assert tokens.issue(user) != tokens.issue(user)

    def test_valid_just_before_expiry(self, tokens, user, clock):
        token = tokens.issue(user)
        clock.advance(hours=23, minutes=59)

        assert tokens.verify(token)["sub"] == 7

    def test_expired_after_lifetime(self, tokens, user, clock):
        token = tokens.issue(user)
        clock.advance(hours=24, minutes=1)

        with pytest.raises(TokenExpired):
            tokens.verify(token)

    def test_wrong_secret_is_invalid(self, tokens, user, clock):
        other = TokenService("another-signing-secret-0123456789abcdef", clock=clock)

        with pytest.raises(TokenInvalid):
            other.verify(tokens.issue(user))

    def test_tampered_token_is_invalid(self, tokens, user):
        header, payload, signature = tokens.issue(user).split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        tampered = ".".join([header, payload, flipped])

        with pytest.raises(TokenInvalid):
            tokens.verify(tampered)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", None])
    def test_malformed_token_is_invalid(self, tokens, token):
        with pytest.raises(TokenInvalid):
            tokens.verify(token)

    def test_missing_claims_are_invalid(self, tokens, clock):
        now = int(clock().timestamp())
        token = jwt.encode({"sub": 7, "iat": now, "exp": now + 60}, SECRET, algorithm="HS256")

        with pytest.raises(TokenInvalid):
            tokens.verify(token)

    def test_string_subject_is_invalid(self, tokens, clock):
        now = int(clock().timestamp())
        payload = {
            "sub": "7",
            "email": "ana@example.com",
            "name": "Ana",
            "email_verified": False,
            "iat": now,
            "exp": now + 60,
        }
        token = jwt.encode(payload, SECRET, algorithm="HS256")

        with pytest.raises(TokenInvalid):
            tokens.verify(token)

    def test_custom_lifetime(self, user, clock):
        short = TokenService(SECRET, lifetime=timedelta(minutes=5), clock=clock)
        token = short.issue(user)
        clock.advance(minutes=5)

        with pytest.raises(TokenExpired):
            short.verify(token)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenService("")
