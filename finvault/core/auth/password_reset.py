"""
Password Reset
==============

Single-use, time-bounded reset tokens.

``request_reset`` answers with the same constant message whether or not
the email is registered. The token itself travels out of band through a
delivery callback (the mailer is an external collaborator).

Redemption is one conditional store update: the first caller to present
a valid token wins, every later or concurrent caller gets TokenInvalid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Final, Optional

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.auth.credential_manager import SECRET_TOKEN_BYTES, generate_secret_token
from finvault.core.auth.session_control import SessionManager
from finvault.core.errors import TokenExpired, TokenInvalid
from finvault.core.models import User, utcnow
from finvault.db.base import CancelToken, UserStore
from finvault.utils.validators import normalize_email, validate_new_password, validate_single_use_token


RESET_TOKEN_LIFETIME: Final[timedelta] = timedelta(hours=1)
RESET_REQUESTED_MESSAGE: Final[str] = (
    "If the email is registered, you will receive instructions to reset your password"
)
PASSWORD_RESET_MESSAGE: Final[str] = "Password changed successfully"

ResetDelivery = Callable[[User, str], None]


@dataclass(frozen=True)
class ResetConfirmation:
    """Outcome of a redeemed reset token."""
    user_id: int
    email: str
    sessions_revoked: int


class ResetFlow:
    """
    Issues and redeems password reset tokens.

    Usage:
        flow = ResetFlow(users, hasher, sessions, deliver=mailer.send_reset)
        flow.request_reset("ana@example.com")
        flow.confirm_reset(token, "N3w!password")
    """

    __slots__ = ("_users", "_hasher", "_sessions", "_deliver", "_lifetime", "_token_bytes", "_clock", "_log")

    def __init__(
        self,
        users: UserStore,
        hasher: Argon2Hasher,
        sessions: SessionManager,
        deliver: Optional[ResetDelivery] = None,
        lifetime: timedelta = RESET_TOKEN_LIFETIME,
        token_bytes: int = SECRET_TOKEN_BYTES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._sessions = sessions
        self._deliver = deliver
        self._lifetime = lifetime
        self._token_bytes = token_bytes
        self._clock = clock
        self._log = logging.getLogger("finvault.reset")

    def request_reset(self, email: str, cancel: Optional[CancelToken] = None) -> Optional[User]:
        """
        Issue a reset token if the email belongs to an active account.

        Callers must answer with :data:`RESET_REQUESTED_MESSAGE` regardless
        of the return value.

        Returns:
            The user the token was issued to, or None
        """
        user = self._users.find_by_email(normalize_email(email), cancel=cancel)
        if user is None or not user.is_active:
            return None

        token = generate_secret_token(self._token_bytes)
        updated = self._users.update(
            user.id,
            {
                "reset_token": token,
                "reset_token_expires": self._clock() + self._lifetime,
            },
            cancel=cancel,
        )
        if updated is None:
            return None

        if self._deliver is not None:
            try:
                self._deliver(updated, token)
            except Exception:
                # The token is stored; the user can request a new one
                self._log.exception(f"Reset token delivery failed for user {updated.id}")

        return updated

    def confirm_reset(
        self,
        token: str,
        new_password: str,
        cancel: Optional[CancelToken] = None,
    ) -> ResetConfirmation:
        """
        Redeem a reset token and set a new password.

        Clears the token and the lockout state, and revokes every session
        of the user.

        Raises:
            ValidationError: Malformed token or weak password
            TokenInvalid: Unknown or already used token
            TokenExpired: Token older than its lifetime
        """
        validate_single_use_token(token)
        validate_new_password(new_password)

        user = self._users.find_by_reset_token(token, cancel=cancel)
        if user is None or not user.is_active:
            raise TokenInvalid()

        now = self._clock()
        if user.reset_token_expires is None or now > user.reset_token_expires:
            raise TokenExpired()

        password_hash = self._hasher.hash(new_password)
        redeemed = self._users.redeem_reset_token(token, password_hash, now, cancel=cancel)
        if redeemed is None:
            raise TokenInvalid()

        revoked = self._sessions.invalidate_all_sessions(redeemed.id, cancel=cancel)
        self._log.info(f"Password reset for user {redeemed.id}, {revoked} session(s) revoked")
        return ResetConfirmation(user_id=redeemed.id, email=redeemed.email, sessions_revoked=revoked)
