"""
Email Verification
==================

Redeems the single-use verification token issued at registration.
"""

from __future__ import annotations

import logging
from typing import Optional

from finvault.core.errors import TokenInvalid
from finvault.core.models import User
from finvault.db.base import CancelToken, UserStore
from finvault.utils.validators import validate_single_use_token


class VerificationFlow:
    """Marks an email as verified when its token is presented once."""

    __slots__ = ("_users", "_log")

    def __init__(self, users: UserStore) -> None:
        self._users = users
        self._log = logging.getLogger("finvault.verification")

    def verify_email(self, token: str, cancel: Optional[CancelToken] = None) -> User:
        """
        Redeem a verification token.

        Raises:
            ValidationError: Malformed token
            TokenInvalid: Unknown or already redeemed token
        """
        validate_single_use_token(token)

        user = self._users.redeem_verification_token(token, cancel=cancel)
        if user is None:
            raise TokenInvalid()

        self._log.info(f"Email verified for user {user.id}")
        return user
