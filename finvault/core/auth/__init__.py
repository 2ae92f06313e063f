"""
FinVault Authentication Module
==============================

Provides:
- Argon2id password hashing
- Signed bearer tokens
- Server-side sessions with expiration and revocation
- Login lockout after repeated failures
- Password reset and email verification tokens

Security Properties:
- Memory-hard password hashing
- Atomic counter and single-use token updates
- Generic errors that never reveal whether an account exists
"""

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.auth.tokens import TokenService
from finvault.core.auth.lockout import LockoutGuard, LockoutOutcome
from finvault.core.auth.session_control import SessionManager, ValidatedSession
from finvault.core.auth.credential_manager import (
    CredentialManager,
    LoginResult,
    Registration,
)
from finvault.core.auth.password_reset import ResetFlow, RESET_REQUESTED_MESSAGE
from finvault.core.auth.email_verification import VerificationFlow
from finvault.core.auth.orchestrator import AuthOrchestrator

__all__ = [
    "Argon2Hasher",
    "TokenService",
    "LockoutGuard",
    "LockoutOutcome",
    "SessionManager",
    "ValidatedSession",
    "CredentialManager",
    "LoginResult",
    "Registration",
    "ResetFlow",
    "RESET_REQUESTED_MESSAGE",
    "VerificationFlow",
    "AuthOrchestrator",
]
