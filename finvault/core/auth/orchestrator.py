"""
Auth Orchestrator
=================

The facade the boundary layer talks to.

Every public operation runs inside one audited exit point: exactly one
audit event is emitted per call, on success and on failure. Store
failures leave as a detail-free StoreError and a failing audit sink never
changes the outcome of the call that produced the event.

Usage:
    auth = AuthOrchestrator.from_config(SecureConfig.load())

    auth.register("Ana Souza", "ana@example.com", "S3cure!pass")
    result = auth.login("ana@example.com", "S3cure!pass", ClientInfo(ip="10.0.0.1"))
    profile = auth.get_profile(result["token"])
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Final, Iterator, Optional

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.auth.credential_manager import TOKEN_EXPIRY_LABEL, CredentialManager, LoginFailure
from finvault.core.auth.email_verification import VerificationFlow
from finvault.core.auth.lockout import LockoutGuard
from finvault.core.auth.password_reset import (
    PASSWORD_RESET_MESSAGE,
    RESET_REQUESTED_MESSAGE,
    ResetDelivery,
    ResetFlow,
)
from finvault.core.auth.session_control import SessionManager, ValidatedSession
from finvault.core.auth.tokens import TokenService
from finvault.core.config import SecureConfig
from finvault.core.errors import AuthError, SessionInvalid, StoreError, ValidationError
from finvault.core.logging import configure_from_config
from finvault.core.models import (
    ClientInfo,
    User,
    public_session,
    public_user,
    session_listing,
    utcnow,
)
from finvault.db.base import CancelToken
from finvault.db.sqlite import SQLiteSessionStore, SQLiteUserStore
from finvault.security.audit import (
    AuditAction,
    AuditEvent,
    AuditSeverity,
    AuditSink,
    BackgroundAuditDispatcher,
    TamperAwareAuditLog,
    token_prefix,
)
from finvault.utils.validators import normalize_email


DEACTIVATION_CONFIRMATION: Final[str] = "CONFIRM_DELETE"
LOGOUT_MESSAGE: Final[str] = "Logout successful"
PASSWORD_CHANGED_MESSAGE: Final[str] = "Password changed successfully"
ACCOUNT_DEACTIVATED_MESSAGE: Final[str] = "Account deactivated successfully"
EMAIL_VERIFIED_MESSAGE: Final[str] = "Email verified successfully"


class _AuditScope:
    """Mutable audit context filled in while an operation runs."""

    __slots__ = ("email", "user_id", "details", "login_failure")

    def __init__(self, email: Optional[str] = None) -> None:
        self.email = email
        self.user_id: Optional[int] = None
        self.details: dict[str, Any] = {}
        self.login_failure: Optional[LoginFailure] = None

    def bind(self, user: User) -> None:
        self.user_id = user.id
        self.email = user.email

    def failure_severity(self) -> AuditSeverity:
        failure = self.login_failure
        if failure is not None and failure.lockout is not None and failure.lockout.lock_engaged:
            return AuditSeverity.CRITICAL
        return AuditSeverity.WARNING

    def absorb_login_failure(self) -> None:
        failure = self.login_failure
        if failure is None:
            return
        if failure.user_id is not None:
            self.user_id = failure.user_id
        if failure.reason:
            self.details["reason"] = failure.reason
        if failure.lockout is not None:
            self.details["failed_attempts"] = failure.lockout.failed_attempts
            if failure.lockout.locked_until is not None:
                self.details["locked_until"] = failure.lockout.locked_until.isoformat()
        self.details.update(failure.extra)


def _audit_email(email: Any) -> Optional[str]:
    if isinstance(email, str) and email.strip():
        return normalize_email(email)[:255]
    return None


class AuthOrchestrator:
    """
    Facade over the credential, session, reset and verification flows.

    Public return values are plain mappings built from the explicit
    public projections, ready to be serialized by the boundary layer.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        sessions: SessionManager,
        tokens: TokenService,
        resets: ResetFlow,
        verification: VerificationFlow,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._credentials = credentials
        self._sessions = sessions
        self._tokens = tokens
        self._resets = resets
        self._verification = verification
        self._audit_sink = audit_sink
        self._clock = clock
        self._log = logging.getLogger("finvault.orchestrator")

    @classmethod
    def from_config(
        cls,
        config: SecureConfig,
        deliver_reset: Optional[ResetDelivery] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        configure_logging: bool = True,
    ) -> AuthOrchestrator:
        """
        Wire the SQLite stores and every flow from configuration.

        Without an explicit sink, events go to the chained audit log under
        the configured log directory, behind a background dispatcher. With
        ``configure_logging`` the root logger gets the redacting handlers
        described by ``config.logging``.
        """
        security = config.security
        config.ensure_directories()
        if configure_logging:
            configure_from_config(config)

        users = SQLiteUserStore(config.paths.database_path, clock=clock)
        session_store = SQLiteSessionStore(config.paths.database_path, clock=clock)

        hasher = Argon2Hasher(
            memory_cost=security.argon2_memory_cost,
            time_cost=security.argon2_time_cost,
            parallelism=security.argon2_parallelism,
        )
        tokens = TokenService(
            config.jwt_secret,
            algorithm=security.jwt_algorithm,
            lifetime=timedelta(seconds=security.token_lifetime_seconds),
            clock=clock,
        )
        lockout = LockoutGuard(
            users,
            max_attempts=security.max_login_attempts,
            lock_duration=timedelta(seconds=security.lockout_duration_seconds),
            clock=clock,
        )
        sessions = SessionManager(
            session_store,
            tokens,
            lifetime=timedelta(seconds=security.session_lifetime_seconds),
            clock=clock,
        )
        credentials = CredentialManager(
            users,
            hasher,
            tokens,
            sessions,
            lockout,
            token_bytes=security.secret_token_bytes,
            clock=clock,
        )
        resets = ResetFlow(
            users,
            hasher,
            sessions,
            deliver=deliver_reset,
            lifetime=timedelta(seconds=security.reset_token_lifetime_seconds),
            token_bytes=security.secret_token_bytes,
            clock=clock,
        )

        if audit_sink is None:
            audit_sink = BackgroundAuditDispatcher(
                TamperAwareAuditLog(config.paths.audit_log_path)
            )

        return cls(
            credentials,
            sessions,
            tokens,
            resets,
            VerificationFlow(users),
            audit_sink=audit_sink,
            clock=clock,
        )

    def close(self) -> None:
        """Drain and stop the audit sink if it runs in the background."""
        close = getattr(self._audit_sink, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------
    # Audit plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _audited(self, action: AuditAction, email: Any = None) -> Iterator[_AuditScope]:
        """Run one operation and emit exactly one audit event for it."""
        scope = _AuditScope(_audit_email(email))
        try:
            yield scope
        except StoreError as exc:
            scope.details["error"] = StoreError.code
            self._emit(action, False, scope, AuditSeverity.WARNING)
            self._log.error(f"{action.value} failed on a store error ({type(exc).__name__})")
            raise StoreError() from None
        except AuthError as exc:
            scope.absorb_login_failure()
            scope.details["error"] = exc.code
            self._emit(action, False, scope, scope.failure_severity())
            raise
        except Exception as exc:
            scope.details["error"] = type(exc).__name__
            self._emit(action, False, scope, AuditSeverity.WARNING)
            raise
        else:
            self._emit(action, True, scope, AuditSeverity.INFO)

    def _emit(
        self,
        action: AuditAction,
        success: bool,
        scope: _AuditScope,
        severity: AuditSeverity,
    ) -> None:
        if self._audit_sink is None:
            return
        try:
            self._audit_sink.record(
                AuditEvent(
                    action=action,
                    success=success,
                    severity=severity,
                    timestamp=self._clock(),
                    user_id=scope.user_id,
                    email=scope.email,
                    details=scope.details,
                )
            )
        except Exception:
            self._log.exception(f"Audit sink rejected {action.value} event")

    def _authenticate(
        self,
        token: str,
        scope: _AuditScope,
        cancel: Optional[CancelToken],
    ) -> tuple[ValidatedSession, User]:
        """Validate a bearer token and load its active user."""
        scope.details["token"] = token_prefix(token)
        validated = self._sessions.validate_session(token, cancel=cancel)
        scope.user_id = validated.session.user_id
        scope.details["session_id"] = validated.session.id

        user = self._credentials.get_user(validated.session.user_id, cancel=cancel)
        if user is None:
            raise SessionInvalid()
        scope.bind(user)
        return validated, user

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        """
        Create an account.

        Returns:
            ``{"user": <public user>, "verification_token": str}``; the token
            is meant for out-of-band delivery only
        """
        with self._audited(AuditAction.REGISTER, email) as scope:
            registration = self._credentials.register(name, email, password, cancel=cancel)
            scope.user_id = registration.user["id"]
            scope.email = registration.user["email"]
            return {
                "user": registration.user,
                "verification_token": registration.verification_token,
            }

    def login(
        self,
        email: str,
        password: str,
        client: Optional[ClientInfo] = None,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        """
        Authenticate and open a session.

        Returns:
            ``{"user": <public user>, "token": str, "expires_in": "24h",
            "session": <public session>}``
        """
        client = client or ClientInfo()
        with self._audited(AuditAction.LOGIN, email) as scope:
            scope.details.update(ip=client.ip, user_agent=client.user_agent, device=client.device)
            scope.login_failure = LoginFailure()

            result = self._credentials.login(
                email, password, client, failure=scope.login_failure, cancel=cancel
            )
            scope.user_id = result.user["id"]
            scope.details["session_id"] = result.session.id
            scope.details["token"] = token_prefix(result.token)
            return {
                "user": result.user,
                "token": result.token,
                "expires_in": result.expires_in,
                "session": public_session(result.session),
            }

    def change_password(
        self,
        token: str,
        current_password: str,
        new_password: str,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        """Change the password, keeping the caller's session and revoking the rest."""
        with self._audited(AuditAction.CHANGE_PASSWORD) as scope:
            _, user = self._authenticate(token, scope, cancel)
            revoked = self._credentials.change_password(
                user.id, current_password, new_password, keep_token=token, cancel=cancel
            )
            scope.details["sessions_revoked"] = revoked
            return {"message": PASSWORD_CHANGED_MESSAGE, "sessions_revoked": revoked}

    def deactivate_account(
        self,
        token: str,
        confirmation: str,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        """
        Soft-delete the caller's account.

        ``confirmation`` must equal :data:`DEACTIVATION_CONFIRMATION`.
        """
        with self._audited(AuditAction.DEACTIVATE_ACCOUNT) as scope:
            _, user = self._authenticate(token, scope, cancel)
            if confirmation != DEACTIVATION_CONFIRMATION:
                raise ValidationError(
                    fields={"confirmation": ["Account deletion must be confirmed"]}
                )
            revoked = self._credentials.deactivate(user.id, cancel=cancel)
            scope.details["sessions_revoked"] = revoked
            return {"message": ACCOUNT_DEACTIVATED_MESSAGE}

    def get_profile(self, token: str, cancel: Optional[CancelToken] = None) -> dict[str, Any]:
        """Public projection of the user behind a bearer token."""
        with self._audited(AuditAction.GET_PROFILE) as scope:
            _, user = self._authenticate(token, scope, cancel)
            return public_user(user)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def validate_session(self, token: str, cancel: Optional[CancelToken] = None) -> dict[str, Any]:
        """
        Validate a bearer token against its session.

        Returns:
            ``{"claims": dict, "user": <public user>, "session": <session listing>}``
        """
        with self._audited(AuditAction.VALIDATE_SESSION) as scope:
            validated, user = self._authenticate(token, scope, cancel)
            return {
                "claims": validated.claims,
                "user": public_user(user),
                "session": session_listing(validated.session, current_token=token),
            }

    def logout(self, token: str, cancel: Optional[CancelToken] = None) -> dict[str, Any]:
        """Revoke the session bound to ``token``."""
        with self._audited(AuditAction.LOGOUT) as scope:
            _, user = self._authenticate(token, scope, cancel)
            self._sessions.invalidate_session(token, user.id, cancel=cancel)
            return {"message": LOGOUT_MESSAGE}

    def refresh_token(self, token: str, cancel: Optional[CancelToken] = None) -> dict[str, Any]:
        """
        Exchange a valid token for a fresh one.

        The old session is revoked first and only the caller that revoked
        it gets a new session, opened with the same client metadata.
        Expired tokens cannot be refreshed (TokenExpired).

        Raises:
            SessionInvalid: The old session was revoked concurrently
        """
        with self._audited(AuditAction.REFRESH_TOKEN) as scope:
            validated, user = self._authenticate(token, scope, cancel)
            old = validated.session
            if not self._sessions.invalidate_session(token, user.id, cancel=cancel):
                raise SessionInvalid("Session has been revoked")

            client = ClientInfo(ip=old.ip_address, user_agent=old.user_agent, device=old.device)
            new_token = self._tokens.issue(user)
            session = self._sessions.create_session(user.id, new_token, client, cancel=cancel)

            scope.details["new_session_id"] = session.id
            scope.details["new_token"] = token_prefix(new_token)
            return {
                "user": public_user(user),
                "token": new_token,
                "expires_in": TOKEN_EXPIRY_LABEL,
                "session": public_session(session),
            }

    def list_sessions(self, token: str, cancel: Optional[CancelToken] = None) -> list[dict[str, Any]]:
        """Active sessions of the caller, newest first, without tokens."""
        with self._audited(AuditAction.LIST_SESSIONS) as scope:
            _, user = self._authenticate(token, scope, cancel)
            sessions = self._sessions.list_sessions(user.id, cancel=cancel)
            scope.details["count"] = len(sessions)
            return [session_listing(session, current_token=token) for session in sessions]

    def terminate_session(
        self,
        token: str,
        session_id: str,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        """
        Revoke one of the caller's sessions by id.

        Raises:
            SessionInvalid: No active session with that id belongs to the caller
        """
        with self._audited(AuditAction.TERMINATE_SESSION) as scope:
            _, user = self._authenticate(token, scope, cancel)
            scope.details["target_session_id"] = session_id
            if not self._sessions.terminate_session(session_id, user.id, cancel=cancel):
                raise SessionInvalid("Session not found")
            return {"message": "Session terminated", "session_id": session_id}

    # ------------------------------------------------------------------
    # Single-use token flows
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, cancel: Optional[CancelToken] = None) -> dict[str, str]:
        """
        Start a password reset.

        The response is the same constant mapping whether or not the email
        is registered. Malformed input and store failures still raise.
        """
        with self._audited(AuditAction.RESET_PASSWORD_REQUEST, email) as scope:
            user = self._resets.request_reset(email, cancel=cancel)
            scope.details["issued"] = user is not None
            if user is not None:
                scope.user_id = user.id
            return {"message": RESET_REQUESTED_MESSAGE}

    def confirm_password_reset(
        self,
        token: str,
        new_password: str,
        cancel: Optional[CancelToken] = None,
    ) -> dict[str, str]:
        """Redeem a reset token and set a new password."""
        with self._audited(AuditAction.RESET_PASSWORD_CONFIRM) as scope:
            scope.details["token"] = token_prefix(token)
            confirmation = self._resets.confirm_reset(token, new_password, cancel=cancel)
            scope.user_id = confirmation.user_id
            scope.email = confirmation.email
            scope.details["sessions_revoked"] = confirmation.sessions_revoked
            return {"message": PASSWORD_RESET_MESSAGE}

    def verify_email(self, token: str, cancel: Optional[CancelToken] = None) -> dict[str, Any]:
        """Redeem an email verification token."""
        with self._audited(AuditAction.VERIFY_EMAIL) as scope:
            scope.details["token"] = token_prefix(token)
            user = self._verification.verify_email(token, cancel=cancel)
            scope.bind(user)
            return {"message": EMAIL_VERIFIED_MESSAGE, "user": public_user(user)}
