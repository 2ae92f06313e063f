"""
Store Contracts
===============

Abstract persistence contracts consumed by the auth core, plus the
cancellation signal threaded through every store call.

Any implementation must make the counter, lock and single-use token
operations atomic against concurrent callers, including callers in other
processes. Process-local locking is not sufficient.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from finvault.core.models import Session, User
from finvault.core.errors import OperationCancelled


class CancelToken:
    """
    Caller-supplied cancellation signal.

    Stores check the token before starting and before committing a
    transaction. A cancelled call rolls back and raises
    :class:`OperationCancelled`, leaving no partial writes behind.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason)


def check_cancelled(cancel: Optional[CancelToken]) -> None:
    """Raise OperationCancelled if ``cancel`` has fired."""
    if cancel is not None:
        cancel.raise_if_cancelled()


@runtime_checkable
class UserStore(Protocol):
    """Persistent table of user records."""

    def find_by_email(self, email: str, cancel: Optional[CancelToken] = None) -> Optional[User]: ...

    def find_by_id(self, user_id: int, cancel: Optional[CancelToken] = None) -> Optional[User]: ...

    def find_by_reset_token(self, token: str, cancel: Optional[CancelToken] = None) -> Optional[User]: ...

    def find_by_verification_token(
        self, token: str, cancel: Optional[CancelToken] = None
    ) -> Optional[User]: ...

    def insert(self, record: Mapping[str, Any], cancel: Optional[CancelToken] = None) -> User:
        """Insert a user; raises DuplicateKeyError if the email is taken."""
        ...

    def update(
        self, user_id: int, patch: Mapping[str, Any], cancel: Optional[CancelToken] = None
    ) -> Optional[User]:
        """Apply ``patch`` in one statement and return the updated record."""
        ...

    def increment_failed_attempts(self, user_id: int, cancel: Optional[CancelToken] = None) -> int:
        """Atomically add one to the failed-login counter and return the new value."""
        ...

    def cas_set_lock(
        self,
        user_id: int,
        until: datetime,
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """Set ``locked_until`` only if no lock is in force at ``now``."""
        ...

    def update_if_unlocked(
        self,
        user_id: int,
        patch: Mapping[str, Any],
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[User]:
        """
        Apply ``patch`` only if no lock is in force at ``now``. Returns None
        when the account is locked (or gone) at the time of the write.
        """
        ...

    def redeem_reset_token(
        self,
        token: str,
        password_hash: str,
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[User]:
        """
        Consume an unexpired reset token, store the new hash and clear the
        lockout state. Returns None if the token is no longer redeemable.
        """
        ...

    def redeem_verification_token(
        self, token: str, cancel: Optional[CancelToken] = None
    ) -> Optional[User]:
        """Consume a verification token and mark the email verified."""
        ...


@runtime_checkable
class SessionStore(Protocol):
    """Persistent table of session records."""

    def insert(self, record: Session, cancel: Optional[CancelToken] = None) -> Session: ...

    def find_by_token(self, token: str, cancel: Optional[CancelToken] = None) -> Optional[Session]: ...

    def find_by_id(self, session_id: str, cancel: Optional[CancelToken] = None) -> Optional[Session]: ...

    def list_active_for_user(
        self, user_id: int, now: datetime, cancel: Optional[CancelToken] = None
    ) -> list[Session]: ...

    def set_active(
        self,
        token: str,
        active: bool,
        user_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int: ...

    def set_active_by_id(
        self,
        session_id: str,
        user_id: int,
        active: bool,
        cancel: Optional[CancelToken] = None,
    ) -> int: ...

    def set_active_all_for_user(
        self,
        user_id: int,
        active: bool,
        except_token: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int: ...
