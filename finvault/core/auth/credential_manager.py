"""
Credential Management
=====================

Registration, login, password change and account deactivation.

Security Features:
- Argon2id password hashing
- Login lockout after repeated failures
- Identical error for unknown email and wrong password
- Equalized timing for unknown accounts
- Opaque single-use email verification token
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Final, Optional

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.auth.lockout import LockoutGuard, LockoutOutcome
from finvault.core.auth.session_control import SessionManager
from finvault.core.auth.tokens import TokenService
from finvault.core.errors import (
    AccountLocked,
    DuplicateEmail,
    DuplicateKeyError,
    InvalidCredentials,
)
from finvault.core.models import ClientInfo, Session, User, public_user, utcnow
from finvault.db.base import CancelToken, UserStore
from finvault.utils.validators import (
    normalize_email,
    validate_new_password,
    validate_registration,
    validate_string_safe,
)


SECRET_TOKEN_BYTES: Final[int] = 32
TOKEN_EXPIRY_LABEL: Final[str] = "24h"


def generate_secret_token(nbytes: int = SECRET_TOKEN_BYTES) -> str:
    """Cryptographically random hex token for single-use flows."""
    return secrets.token_hex(max(nbytes, SECRET_TOKEN_BYTES))


@dataclass
class Registration:
    """Result of a successful registration."""
    user: dict[str, Any]
    verification_token: str

    def __repr__(self) -> str:
        return f"Registration(user_id={self.user.get('id')!r})"


@dataclass
class LoginResult:
    """Result of a successful login."""
    user: dict[str, Any]
    token: str
    session: Session
    expires_in: str = TOKEN_EXPIRY_LABEL

    def __repr__(self) -> str:
        return f"LoginResult(user_id={self.user.get('id')!r}, expires_in={self.expires_in!r})"


@dataclass
class LoginFailure:
    """
    Details of a rejected login, filled in as the attempt progresses.

    Kept separate from the raised error so the audit trail can record the
    real reason while the caller only ever sees InvalidCredentials.
    """
    reason: str = ""
    user_id: Optional[int] = None
    lockout: Optional[LockoutOutcome] = None
    extra: dict[str, Any] = field(default_factory=dict)


class CredentialManager:
    """
    Registration and login over a UserStore.

    Usage:
        manager = CredentialManager(users, hasher, tokens, sessions, lockout)

        registration = manager.register("Ana Souza", "ana@example.com", "S3cure!pass")
        result = manager.login("ana@example.com", "S3cure!pass", ClientInfo(ip="10.0.0.1"))

    Security Notes:
        - Passwords are hashed with Argon2id and never logged
        - Unknown email, inactive account and wrong password all raise
          the same InvalidCredentials
        - A locked account is rejected before the password is checked
    """

    __slots__ = (
        "_users", "_hasher", "_tokens", "_sessions", "_lockout",
        "_token_bytes", "_clock", "_log",
    )

    def __init__(
        self,
        users: UserStore,
        hasher: Argon2Hasher,
        tokens: TokenService,
        sessions: SessionManager,
        lockout: LockoutGuard,
        token_bytes: int = SECRET_TOKEN_BYTES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._tokens = tokens
        self._sessions = sessions
        self._lockout = lockout
        self._token_bytes = token_bytes
        self._clock = clock
        self._log = logging.getLogger("finvault.auth")

    def register(
        self,
        name: str,
        email: str,
        password: str,
        cancel: Optional[CancelToken] = None,
    ) -> Registration:
        """
        Create a new account.

        The account can log in immediately; ``email_verified`` stays False
        until the verification token is redeemed.

        Raises:
            ValidationError: If any field is malformed
            DuplicateEmail: If the normalized email is already registered
        """
        validate_registration(name, email, password)
        email = normalize_email(email)

        if self._users.find_by_email(email, cancel=cancel) is not None:
            raise DuplicateEmail()

        verification_token = generate_secret_token(self._token_bytes)
        record = {
            "name": name.strip(),
            "email": email,
            "password_hash": self._hasher.hash(password),
            "email_verified": False,
            "verification_token": verification_token,
        }

        try:
            user = self._users.insert(record, cancel=cancel)
        except DuplicateKeyError:
            # Lost a race with a concurrent registration
            raise DuplicateEmail() from None

        self._log.info(f"Registered user {user.id}")
        return Registration(user=public_user(user), verification_token=verification_token)

    def login(
        self,
        email: str,
        password: str,
        client: Optional[ClientInfo] = None,
        failure: Optional[LoginFailure] = None,
        cancel: Optional[CancelToken] = None,
    ) -> LoginResult:
        """
        Authenticate with email and password and open a session.

        Args:
            email: Email address (normalized here)
            password: Password to verify
            client: Client metadata recorded on the session
            failure: Optional collector for the real rejection reason

        Raises:
            InvalidCredentials: Unknown email, inactive account or wrong password
            AccountLocked: Account is temporarily locked
        """
        client = client or ClientInfo()
        failure = failure if failure is not None else LoginFailure()
        validate_string_safe(email or "", max_length=255, field_name="email")
        validate_string_safe(password or "", max_length=128, field_name="password")

        user = self._users.find_by_email(normalize_email(email), cancel=cancel)

        if user is None or not user.is_active:
            self._hasher.dummy_verify(password)
            failure.reason = "unknown_email" if user is None else "inactive_account"
            raise InvalidCredentials()

        failure.user_id = user.id

        if self._lockout.is_locked(user):
            failure.reason = "account_locked"
            raise AccountLocked(self._lockout.remaining_seconds(user))

        if not self._hasher.verify(password, user.password_hash):
            outcome = self._lockout.record_failure(user.id, cancel=cancel)
            failure.reason = "wrong_password"
            failure.lockout = outcome
            if outcome.lock_engaged:
                self._log.warning(
                    f"User {user.id} locked after {outcome.failed_attempts} failed attempts"
                )
            raise InvalidCredentials()

        rehashed = self._hasher.hash(password) if self._hasher.needs_rehash(user.password_hash) else None
        updated = self._lockout.record_success(user.id, client, password_hash=rehashed, cancel=cancel)
        if updated is None:
            # Concurrent failures engaged the lock while the password was checked
            failure.reason = "account_locked"
            current = self._users.find_by_id(user.id, cancel=cancel)
            raise AccountLocked(self._lockout.remaining_seconds(current) if current else 0)
        user = updated

        token = self._tokens.issue(user)
        session = self._sessions.create_session(user.id, token, client, cancel=cancel)

        self._log.info(f"User {user.id} logged in")
        return LoginResult(user=public_user(user), token=token, session=session)

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        keep_token: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        """
        Replace the password of an authenticated user.

        Every other session is revoked; the one bound to ``keep_token``
        survives.

        Returns:
            Number of sessions revoked

        Raises:
            ValidationError: If the new password is too weak
            InvalidCredentials: If the current password is wrong
        """
        validate_new_password(new_password)

        user = self._users.find_by_id(user_id, cancel=cancel)
        if user is None or not user.is_active:
            raise InvalidCredentials()
        if not self._hasher.verify(current_password, user.password_hash):
            raise InvalidCredentials()

        self._users.update(
            user_id, {"password_hash": self._hasher.hash(new_password)}, cancel=cancel
        )
        revoked = self._sessions.invalidate_all_sessions(
            user_id, except_token=keep_token, cancel=cancel
        )
        self._log.info(f"Password changed for user {user_id}")
        return revoked

    def deactivate(self, user_id: int, cancel: Optional[CancelToken] = None) -> int:
        """
        Soft-delete an account.

        The email is rewritten to ``deleted_<unix-ts>_<email>`` so it can be
        registered again, pending single-use tokens are cleared and every
        session is revoked.

        Returns:
            Number of sessions revoked
        """
        user = self._users.find_by_id(user_id, cancel=cancel)
        if user is None or not user.is_active:
            raise InvalidCredentials()

        stamp = int(self._clock().timestamp())
        self._users.update(
            user_id,
            {
                "is_active": False,
                "email": f"deleted_{stamp}_{user.email}",
                "reset_token": None,
                "reset_token_expires": None,
                "verification_token": None,
            },
            cancel=cancel,
        )
        revoked = self._sessions.invalidate_all_sessions(user_id, cancel=cancel)
        self._log.info(f"User {user_id} deactivated")
        return revoked

    def get_user(self, user_id: int, cancel: Optional[CancelToken] = None) -> Optional[User]:
        """Active user by id, or None."""
        user = self._users.find_by_id(user_id, cancel=cancel)
        if user is None or not user.is_active:
            return None
        return user
