"""
Login Lockout Policy
====================

Temporary account lockout after repeated failed password checks.

Policy: after ``max_attempts`` consecutive failures (default 5) the
account is locked for ``lock_duration`` (default 15 minutes). While the
lock is in force, login is rejected without checking the password.

Both the counter increment and the lock are atomic store operations. The
lock is a compare-and-set that only succeeds when no lock is in force, so
a burst of concurrent failures engages it exactly once and never extends
it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Final, Optional

from finvault.core.models import ClientInfo, User, utcnow
from finvault.db.base import CancelToken, UserStore


MAX_LOGIN_ATTEMPTS: Final[int] = 5
LOCKOUT_DURATION: Final[timedelta] = timedelta(minutes=15)


@dataclass(frozen=True)
class LockoutOutcome:
    """Result of recording one failed attempt."""
    failed_attempts: int
    lock_engaged: bool
    locked_until: Optional[datetime] = None


class LockoutGuard:
    """
    Encapsulates the failed-attempt counter and lock fields of a user.

    Usage:
        guard = LockoutGuard(user_store)
        if guard.is_locked(user):
            raise AccountLocked(guard.remaining_seconds(user))
        outcome = guard.record_failure(user.id)
    """

    __slots__ = ("_users", "_max_attempts", "_lock_duration", "_clock")

    def __init__(
        self,
        users: UserStore,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        lock_duration: timedelta = LOCKOUT_DURATION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._users = users
        self._max_attempts = max_attempts
        self._lock_duration = lock_duration
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def lock_duration(self) -> timedelta:
        return self._lock_duration

    def is_locked(self, user: User) -> bool:
        return user.is_locked(self._clock())

    def remaining_seconds(self, user: User) -> int:
        """Seconds until the lock elapses, rounded up; 0 if unlocked."""
        if user.locked_until is None:
            return 0
        remaining = (user.locked_until - self._clock()).total_seconds()
        return max(math.ceil(remaining), 0)

    def record_failure(self, user_id: int, cancel: Optional[CancelToken] = None) -> LockoutOutcome:
        """
        Count one failed password check and lock the account if the
        threshold is reached.
        """
        count = self._users.increment_failed_attempts(user_id, cancel=cancel)
        if count < self._max_attempts:
            return LockoutOutcome(failed_attempts=count, lock_engaged=False)

        now = self._clock()
        until = now + self._lock_duration
        engaged = self._users.cas_set_lock(user_id, until, now, cancel=cancel)
        return LockoutOutcome(
            failed_attempts=count,
            lock_engaged=engaged,
            locked_until=until if engaged else None,
        )

    def record_success(
        self,
        user_id: int,
        client: ClientInfo,
        password_hash: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[User]:
        """
        Reset the counter, clear the lock and record last-login metadata
        in a single update that only applies while no lock is in force.

        Args:
            password_hash: Replacement hash when the stored one needs
                rehashing with current parameters

        Returns:
            The updated user, or None if a lock engaged before the write
        """
        patch = {
            "failed_attempts": 0,
            "locked_until": None,
            "last_login_at": self._clock(),
            "last_login_ip": client.ip,
            "last_login_user_agent": client.user_agent,
        }
        if password_hash is not None:
            patch["password_hash"] = password_hash
        return self._users.update_if_unlocked(user_id, patch, self._clock(), cancel=cancel)
