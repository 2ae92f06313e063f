"""
Bearer Token Service
====================

Signs and verifies the bearer tokens handed out at login.

Uses PyJWT with an HMAC algorithm (HS256 by default). Tokens carry the
identity claims ``sub``, ``email``, ``name`` and ``email_verified`` plus
``iat``/``exp`` as unix seconds and a random ``jti``. Lifetime is 24 hours.

Expiry is evaluated against the service clock rather than PyJWT's own
wall clock, so a single time source governs tokens and sessions.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Final

import jwt

from finvault.core.errors import TokenExpired, TokenInvalid
from finvault.core.models import User, utcnow


DEFAULT_TOKEN_LIFETIME: Final[timedelta] = timedelta(hours=24)
REQUIRED_CLAIMS: Final[tuple[str, ...]] = ("sub", "email", "name", "email_verified", "iat", "exp")
_JTI_BYTES: Final[int] = 16


class TokenService:
    """
    Stateless issuer and verifier of signed bearer tokens.

    Usage:
        tokens = TokenService(secret=config.jwt_secret)
        token = tokens.issue(user)
        claims = tokens.verify(token)
    """

    __slots__ = ("_secret", "_algorithm", "_lifetime", "_clock")

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret:
            raise ValueError("Token signing secret cannot be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._lifetime = lifetime
        self._clock = clock

    @property
    def lifetime(self) -> timedelta:
        return self._lifetime

    def issue(self, user: User) -> str:
        """
        Create a signed token for a user.

        Returns:
            Encoded JWT string
        """
        now = int(self._clock().timestamp())
        payload = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "email_verified": bool(user.email_verified),
            "iat": now,
            "exp": now + int(self._lifetime.total_seconds()),
            "jti": secrets.token_hex(_JTI_BYTES),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            TokenInvalid: Bad signature, malformed token or missing claims
            TokenExpired: The ``exp`` claim has elapsed
        """
        if not token or not isinstance(token, str):
            raise TokenInvalid()

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "require": list(REQUIRED_CLAIMS),
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_sub": False,
                },
            )
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid() from exc

        if not isinstance(claims["sub"], int) or not isinstance(claims["exp"], int):
            raise TokenInvalid()

        if int(self._clock().timestamp()) >= claims["exp"]:
            raise TokenExpired()

        return claims
