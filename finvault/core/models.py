"""
Auth Data Model
===============

Identity and session records plus their public projections.

Records are plain dataclasses owned by the stores. Anything that crosses
the boundary goes through :func:`public_user` or :func:`public_session`,
which list the exposed fields explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Final, Optional


DEFAULT_DEVICE: Final[str] = "web"

PUBLIC_USER_FIELDS: Final[tuple[str, ...]] = (
    "id",
    "name",
    "email",
    "email_verified",
    "is_active",
    "last_login_at",
    "last_login_ip",
    "last_login_user_agent",
    "created_at",
    "updated_at",
)

PUBLIC_SESSION_FIELDS: Final[tuple[str, ...]] = (
    "id",
    "user_id",
    "token",
    "ip_address",
    "user_agent",
    "device",
    "created_at",
    "expires_at",
    "active",
)

SESSION_LISTING_FIELDS: Final[tuple[str, ...]] = tuple(
    name for name in PUBLIC_SESSION_FIELDS if name != "token"
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class User:
    """
    User account representation.

    Note: password_hash and the single-use tokens are never exposed in repr.
    """
    id: int
    name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    email_verified: bool = False
    is_active: bool = True
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    reset_token: Optional[str] = None
    reset_token_expires: Optional[datetime] = None
    verification_token: Optional[str] = None
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    last_login_user_agent: Optional[str] = None

    def __repr__(self) -> str:
        """Safe representation without hash or tokens."""
        return (
            f"User(id={self.id!r}, email={self.email!r}, "
            f"email_verified={self.email_verified}, is_active={self.is_active})"
        )

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """Check if the account is currently locked."""
        if self.locked_until is None:
            return False
        return (now or utcnow()) < self.locked_until


@dataclass
class Session:
    """
    Server-side record binding an issued bearer token to a user.

    A session is Active until it is revoked (``active=False``) or its
    ``expires_at`` passes. Both end states are terminal.
    """
    id: str
    user_id: int
    token: str
    created_at: datetime
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device: str = DEFAULT_DEVICE
    active: bool = True

    def __repr__(self) -> str:
        """Safe representation without token."""
        return (
            f"Session(id={self.id!r}, user_id={self.user_id!r}, "
            f"active={self.active}, expires_at={self.expires_at.isoformat()})"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Check if the session is valid (active and not expired)."""
        return self.active and not self.is_expired(now)


@dataclass(frozen=True)
class ClientInfo:
    """Client metadata captured at login."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device: str = DEFAULT_DEVICE


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def public_user(user: User) -> dict[str, Any]:
    """Projection of a user that is safe to return to callers."""
    return {name: _serialize(getattr(user, name)) for name in PUBLIC_USER_FIELDS}


def public_session(session: Session) -> dict[str, Any]:
    """External shape of a session record."""
    return {name: _serialize(getattr(session, name)) for name in PUBLIC_SESSION_FIELDS}


def session_listing(session: Session, current_token: Optional[str] = None) -> dict[str, Any]:
    """
    Shape of a session in a user's device list.

    Other sessions' bearer tokens are never listed; ``current`` marks the
    session the caller is using.
    """
    listing = {name: _serialize(getattr(session, name)) for name in SESSION_LISTING_FIELDS}
    listing["current"] = current_token is not None and session.token == current_token
    return listing
