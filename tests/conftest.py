"""Shared fixtures for the auth core tests."""

from __future__ import annotations

import logging
import threading
import warnings
from datetime import datetime, timedelta, timezone

import pytest

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.auth.credential_manager import CredentialManager
from finvault.core.auth.email_verification import VerificationFlow
from finvault.core.auth.lockout import LockoutGuard
from finvault.core.auth.orchestrator import AuthOrchestrator
from finvault.core.auth.password_reset import ResetFlow
from finvault.core.auth.session_control import SessionManager
from finvault.core.auth.tokens import TokenService
from finvault.core.config import SecurityWarning
from finvault.db.sqlite import SQLiteSessionStore, SQLiteUserStore
from finvault.security.audit import RecentAuditBuffer


SECRET = "test-signing-secret-0123456789abcdef"
PASSWORD = "S3cure!pass"
NEW_PASSWORD = "N3w!password"


class FakeClock:
    """Controllable UTC clock shared by every component under test."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self._now += timedelta(**kwargs)
            return self._now


class DeliveryRecorder:
    """Collects reset tokens handed to the out-of-band mailer."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []

    def __call__(self, user, token: str) -> None:
        self.sent.append((user.id, token))

    @property
    def last_token(self) -> str:
        return self.sent[-1][1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> Argon2Hasher:
    # Cheap parameters keep the suite fast
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", SecurityWarning)
        return Argon2Hasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "finvault.db"


@pytest.fixture
def user_store(db_path, clock) -> SQLiteUserStore:
    return SQLiteUserStore(db_path, clock=clock)


@pytest.fixture
def session_store(db_path, clock) -> SQLiteSessionStore:
    return SQLiteSessionStore(db_path, clock=clock)


@pytest.fixture
def tokens(clock) -> TokenService:
    return TokenService(SECRET, clock=clock)


@pytest.fixture
def lockout(user_store, clock) -> LockoutGuard:
    return LockoutGuard(user_store, clock=clock)


@pytest.fixture
def sessions(session_store, tokens, clock) -> SessionManager:
    return SessionManager(session_store, tokens, clock=clock)


@pytest.fixture
def credentials(user_store, hasher, tokens, sessions, lockout, clock) -> CredentialManager:
    return CredentialManager(user_store, hasher, tokens, sessions, lockout, clock=clock)


@pytest.fixture
def delivery() -> DeliveryRecorder:
    return DeliveryRecorder()


@pytest.fixture
def resets(user_store, hasher, sessions, delivery, clock) -> ResetFlow:
    return ResetFlow(user_store, hasher, sessions, deliver=delivery, clock=clock)


@pytest.fixture
def verification(user_store) -> VerificationFlow:
    return VerificationFlow(user_store)


@pytest.fixture
def audit() -> RecentAuditBuffer:
    return RecentAuditBuffer()


@pytest.fixture
def auth(credentials, sessions, tokens, resets, verification, audit, clock) -> AuthOrchestrator:
    return AuthOrchestrator(
        credentials,
        sessions,
        tokens,
        resets,
        verification,
        audit_sink=audit,
        clock=clock,
    )


@pytest.fixture
def registered(auth) -> dict:
    """A freshly registered, unverified account."""
    return auth.register("Ana Souza", "ana@example.com", PASSWORD)


@pytest.fixture
def root_logging():
    """Root logger, restored after a test reconfigures it."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
