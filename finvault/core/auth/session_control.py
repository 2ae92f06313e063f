"""
Session Control
===============

Server-side sessions bound to issued bearer tokens.

Security Features:
- A session is valid only if its token verifies, its row is active and
  its expiry has not passed
- Revocation is explicit and terminal (rows are deactivated, never deleted)
- Bulk revocation for password change, reset and account deactivation

State machine per session:
    Active -> Expired  (time based, detected lazily at validation)
    Active -> Revoked  (explicit invalidate call)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Final, Optional

from finvault.core.auth.tokens import TokenService
from finvault.core.errors import SessionInvalid
from finvault.core.models import ClientInfo, Session, utcnow
from finvault.db.base import CancelToken, SessionStore


DEFAULT_SESSION_LIFETIME: Final[timedelta] = timedelta(hours=24)


@dataclass(frozen=True)
class ValidatedSession:
    """Decoded token claims together with the matching session row."""
    claims: dict[str, Any]
    session: Session


class SessionManager:
    """
    Session management over a SessionStore.

    Usage:
        manager = SessionManager(session_store, token_service)

        # After successful authentication
        session = manager.create_session(user.id, token, client)

        # On every authenticated request
        validated = manager.validate_session(token)

        # Logout
        manager.invalidate_session(token, user.id)
    """

    __slots__ = ("_sessions", "_tokens", "_lifetime", "_clock", "_log")

    def __init__(
        self,
        sessions: SessionStore,
        tokens: TokenService,
        lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            sessions: Session Store
            tokens: Service used to verify bearer tokens
            lifetime: Session lifetime (default: 24 hours)
            clock: Source of the current UTC time
        """
        self._sessions = sessions
        self._tokens = tokens
        self._lifetime = lifetime
        self._clock = clock
        self._log = logging.getLogger("finvault.sessions")

    def create_session(
        self,
        user_id: int,
        token: str,
        client: Optional[ClientInfo] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Session:
        """Insert an active session row expiring ``lifetime`` from now."""
        client = client or ClientInfo()
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            ip_address=client.ip,
            user_agent=client.user_agent,
            device=client.device,
            created_at=now,
            expires_at=now + self._lifetime,
            active=True,
        )
        self._sessions.insert(session, cancel=cancel)
        self._log.debug(f"Session {session.id} created for user {user_id}")
        return session

    def validate_session(self, token: str, cancel: Optional[CancelToken] = None) -> ValidatedSession:
        """
        Validate a bearer token against its session row.

        Raises:
            TokenInvalid: Token signature or shape is bad
            TokenExpired: Token ``exp`` has elapsed
            SessionInvalid: No row, row revoked, row expired, or the row
                belongs to a different user than the token
        """
        claims = self._tokens.verify(token)

        session = self._sessions.find_by_token(token, cancel=cancel)
        if session is None:
            raise SessionInvalid()
        if not session.active:
            raise SessionInvalid("Session has been revoked")
        if session.is_expired(self._clock()):
            raise SessionInvalid("Session has expired")
        if session.user_id != claims["sub"]:
            self._log.warning(f"Session {session.id} does not match token subject")
            raise SessionInvalid()

        return ValidatedSession(claims=claims, session=session)

    def invalidate_session(
        self,
        token: str,
        user_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """
        Revoke the session bound to ``token``. Idempotent.

        Returns:
            True if an active session was revoked by this call
        """
        return self._sessions.set_active(token, False, user_id=user_id, cancel=cancel) > 0

    def invalidate_all_sessions(
        self,
        user_id: int,
        except_token: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        """
        Revoke every active session of a user except ``except_token``.

        Returns:
            Number of sessions revoked
        """
        count = self._sessions.set_active_all_for_user(
            user_id, False, except_token=except_token, cancel=cancel
        )
        if count:
            self._log.info(f"Revoked {count} session(s) for user {user_id}")
        return count

    def terminate_session(
        self,
        session_id: str,
        user_id: int,
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """Revoke one session by id, only if it belongs to ``user_id``."""
        return self._sessions.set_active_by_id(session_id, user_id, False, cancel=cancel) > 0

    def list_sessions(self, user_id: int, cancel: Optional[CancelToken] = None) -> list[Session]:
        """Active, unexpired sessions of a user, newest first."""
        return self._sessions.list_active_for_user(user_id, self._clock(), cancel=cancel)
