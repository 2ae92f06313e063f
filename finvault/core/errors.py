"""
Authentication Errors
=====================

Exception taxonomy shared by every auth component.

Every error carries a stable ``code`` so the boundary layer can map it to
a response without inspecting messages. Messages never contain secrets,
password hashes or internal storage detail.
"""

from __future__ import annotations

from typing import Any, Final, Optional


INVALID_CREDENTIALS_MESSAGE: Final[str] = "Invalid email or password"
STORE_FAILURE_MESSAGE: Final[str] = "Internal storage failure"


class AuthError(Exception):
    """Base class for all auth core errors."""

    code: str = "auth_error"
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Boundary-safe representation."""
        return {"error": self.code, "message": self.message}


class ValidationError(AuthError, ValueError):
    """
    Raised when input is malformed.

    Attributes:
        fields: Mapping of field name to the list of problems found
    """

    code = "validation_error"
    default_message = "Invalid input"

    def __init__(
        self,
        message: Optional[str] = None,
        fields: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self.fields = fields or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["fields"] = {name: list(problems) for name, problems in self.fields.items()}
        return data


class DuplicateEmail(AuthError):
    """Raised when registering an email that is already taken."""

    code = "duplicate_email"
    default_message = "Email is already in use"


class InvalidCredentials(AuthError):
    """
    Raised for a wrong email or a wrong password.

    The message is always the same so callers cannot tell which.
    """

    code = "invalid_credentials"
    default_message = INVALID_CREDENTIALS_MESSAGE

    def __init__(self) -> None:
        super().__init__(INVALID_CREDENTIALS_MESSAGE)


class AccountLocked(AuthError):
    """Raised when login is attempted during a temporary lockout."""

    code = "account_locked"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = max(int(retry_after), 0)
        super().__init__(
            f"Account temporarily locked. Try again in {self.retry_after} seconds."
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class TokenInvalid(AuthError):
    """Raised for a forged, malformed, unknown or already used token."""

    code = "token_invalid"
    default_message = "Invalid token"


class TokenExpired(AuthError):
    """Raised when a token is well formed but past its expiry."""

    code = "token_expired"
    default_message = "Token has expired"


class SessionInvalid(AuthError):
    """Raised when a session is missing, revoked or expired."""

    code = "session_invalid"
    default_message = "Session is invalid or has expired"


class StoreError(AuthError):
    """
    Raised when the underlying persistence layer fails.

    Internal detail is logged where the failure happens and is never part
    of the message that crosses the boundary.
    """

    code = "store_error"
    default_message = STORE_FAILURE_MESSAGE


class DuplicateKeyError(StoreError):
    """Raised by a store when a uniqueness constraint rejects a write."""

    code = "duplicate_key"
    default_message = "Unique constraint violated"


class OperationCancelled(AuthError):
    """Raised when the caller cancelled an operation before it committed."""

    code = "operation_cancelled"
    default_message = "Operation cancelled"
