"""
SQLite Stores
=============

Reference Credential Store and Session Store backed by SQLite.

Every mutation is a single conditional statement inside a
``BEGIN IMMEDIATE`` transaction, so concurrent callers (threads or
processes sharing the database file) are serialized by the database:

- failed-login increments use ``failed_attempts = failed_attempts + 1``
  with ``RETURNING``, never a read followed by a separate write
- the lockout is engaged with a compare-and-set on ``locked_until``
- a successful login resets the counter only while no lock is in force
- single-use tokens are consumed by an ``UPDATE ... WHERE token = ?``
  that only one caller can win

Connections are opened per call and all timestamps are stored as UTC
ISO-8601 strings with microsecond precision so they compare correctly
as text.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Final, Iterator, Mapping, Optional

from finvault.core.errors import DuplicateKeyError, StoreError
from finvault.core.models import DEFAULT_DEVICE, Session, User, utcnow
from finvault.db.base import CancelToken, check_cancelled


BUSY_TIMEOUT_SECONDS: Final[float] = 30.0


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class _SQLiteStore:
    """Connection and transaction handling shared by the SQLite stores."""

    _SCHEMA: str = ""

    def __init__(
        self,
        db_path: Path | str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            clock: Source of the current UTC time
        """
        self._db_path = Path(db_path)
        self._clock = clock
        self._log = logging.getLogger("finvault.db")
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection in autocommit mode."""
        conn = sqlite3.connect(
            self._db_path,
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize_db(self) -> None:
        """Create tables if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(self._SCHEMA)
        except sqlite3.Error as exc:
            self._log.exception(f"Schema initialization failed for {self._db_path.name}")
            raise StoreError() from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(
        self,
        cancel: Optional[CancelToken] = None,
        write: bool = False,
    ) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one transaction.

        Cancellation is checked before the transaction starts and again
        before it commits; a cancelled block is rolled back. SQLite errors
        are logged here and re-raised as StoreError without detail.
        """
        check_cancelled(cancel)
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            check_cancelled(cancel)
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as exc:
            self._rollback(conn)
            self._log.warning(f"Integrity violation: {exc}")
            raise DuplicateKeyError() from exc
        except sqlite3.Error as exc:
            self._rollback(conn)
            self._log.exception("Storage operation failed")
            raise StoreError() from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")


class SQLiteUserStore(_SQLiteStore):
    """
    Credential Store on SQLite.

    Usage:
        store = SQLiteUserStore(config.paths.database_path)
        user = store.insert({"name": "Ana", "email": "ana@example.com", ...})
        count = store.increment_failed_attempts(user.id)
    """

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        email_verified INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        failed_attempts INTEGER NOT NULL DEFAULT 0,
        locked_until TEXT,
        reset_token TEXT UNIQUE,
        reset_token_expires TEXT,
        verification_token TEXT UNIQUE,
        last_login_at TEXT,
        last_login_ip TEXT,
        last_login_user_agent TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
    """

    _INSERTABLE_COLUMNS: Final[frozenset[str]] = frozenset({
        "name", "email", "password_hash", "email_verified", "is_active",
        "verification_token", "created_at", "updated_at",
    })

    _UPDATABLE_COLUMNS: Final[frozenset[str]] = frozenset({
        "name", "email", "password_hash", "email_verified", "is_active",
        "failed_attempts", "locked_until", "reset_token", "reset_token_expires",
        "verification_token", "last_login_at", "last_login_ip",
        "last_login_user_agent", "updated_at",
    })

    _DATETIME_COLUMNS: Final[frozenset[str]] = frozenset({
        "locked_until", "reset_token_expires", "last_login_at",
        "created_at", "updated_at",
    })

    def _encode(self, column: str, value: Any) -> Any:
        if column in self._DATETIME_COLUMNS:
            return _to_db(value)
        if isinstance(value, bool):
            return int(value)
        return value

    def _find_one(self, where: str, param: Any, cancel: Optional[CancelToken]) -> Optional[User]:
        with self._transaction(cancel) as conn:
            row = conn.execute(f"SELECT * FROM users WHERE {where} = ?", (param,)).fetchone()
        return self._row_to_user(row) if row else None

    def find_by_email(self, email: str, cancel: Optional[CancelToken] = None) -> Optional[User]:
        return self._find_one("email", email, cancel)

    def find_by_id(self, user_id: int, cancel: Optional[CancelToken] = None) -> Optional[User]:
        return self._find_one("id", user_id, cancel)

    def find_by_reset_token(self, token: str, cancel: Optional[CancelToken] = None) -> Optional[User]:
        return self._find_one("reset_token", token, cancel)

    def find_by_verification_token(
        self, token: str, cancel: Optional[CancelToken] = None
    ) -> Optional[User]:
        return self._find_one("verification_token", token, cancel)

    def insert(self, record: Mapping[str, Any], cancel: Optional[CancelToken] = None) -> User:
        """
        Insert a new user.

        Raises:
            DuplicateKeyError: If the email is already registered
        """
        unknown = set(record) - self._INSERTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown user columns: {sorted(unknown)}")

        now = self._clock()
        values = {"created_at": now, "updated_at": now, **record}
        columns = sorted(values)
        placeholders = ", ".join("?" for _ in columns)

        with self._transaction(cancel, write=True) as conn:
            row = conn.execute(
                f"INSERT INTO users ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                tuple(self._encode(column, values[column]) for column in columns),
            ).fetchone()

        return self._row_to_user(row)

    def update(
        self, user_id: int, patch: Mapping[str, Any], cancel: Optional[CancelToken] = None
    ) -> Optional[User]:
        return self._update_where(user_id, patch, "", (), cancel)

    def update_if_unlocked(
        self,
        user_id: int,
        patch: Mapping[str, Any],
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[User]:
        return self._update_where(
            user_id,
            patch,
            " AND (locked_until IS NULL OR locked_until <= ?)",
            (_to_db(now),),
            cancel,
        )

    def _update_where(
        self,
        user_id: int,
        patch: Mapping[str, Any],
        condition: str,
        params: tuple[Any, ...],
        cancel: Optional[CancelToken],
    ) -> Optional[User]:
        unknown = set(patch) - self._UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown user columns: {sorted(unknown)}")

        values = {"updated_at": self._clock(), **patch}
        columns = sorted(values)
        assignments = ", ".join(f"{column} = ?" for column in columns)

        with self._transaction(cancel, write=True) as conn:
            row = conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?{condition} RETURNING *",
                (*(self._encode(column, values[column]) for column in columns), user_id, *params),
            ).fetchone()

        return self._row_to_user(row) if row else None

    def increment_failed_attempts(self, user_id: int, cancel: Optional[CancelToken] = None) -> int:
        with self._transaction(cancel, write=True) as conn:
            row = conn.execute(
                """
                UPDATE users
                SET failed_attempts = failed_attempts + 1, updated_at = ?
                WHERE id = ?
                RETURNING failed_attempts
                """,
                (_to_db(self._clock()), user_id),
            ).fetchone()

        if row is None:
            self._log.error(f"Failed-attempt increment for unknown user id {user_id}")
            raise StoreError()
        return row["failed_attempts"]

    def cas_set_lock(
        self,
        user_id: int,
        until: datetime,
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        with self._transaction(cancel, write=True) as conn:
            result = conn.execute(
                """
                UPDATE users
                SET locked_until = ?, updated_at = ?
                WHERE id = ? AND (locked_until IS NULL OR locked_until <= ?)
                """,
                (_to_db(until), _to_db(self._clock()), user_id, _to_db(now)),
            )
            return result.rowcount == 1

    def redeem_reset_token(
        self,
        token: str,
        password_hash: str,
        now: datetime,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[User]:
        with self._transaction(cancel, write=True) as conn:
            row = conn.execute(
                """
                UPDATE users
                SET password_hash = ?,
                    reset_token = NULL,
                    reset_token_expires = NULL,
                    failed_attempts = 0,
                    locked_until = NULL,
                    updated_at = ?
                WHERE reset_token = ? AND is_active = 1 AND reset_token_expires >= ?
                RETURNING *
                """,
                (password_hash, _to_db(self._clock()), token, _to_db(now)),
            ).fetchone()

        return self._row_to_user(row) if row else None

    def redeem_verification_token(
        self, token: str, cancel: Optional[CancelToken] = None
    ) -> Optional[User]:
        with self._transaction(cancel, write=True) as conn:
            row = conn.execute(
                """
                UPDATE users
                SET email_verified = 1, verification_token = NULL, updated_at = ?
                WHERE verification_token = ? AND is_active = 1
                RETURNING *
                """,
                (_to_db(self._clock()), token),
            ).fetchone()

        return self._row_to_user(row) if row else None

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        """Convert a database row to a User object."""
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            email_verified=bool(row["email_verified"]),
            is_active=bool(row["is_active"]),
            failed_attempts=row["failed_attempts"],
            locked_until=_from_db(row["locked_until"]),
            reset_token=row["reset_token"],
            reset_token_expires=_from_db(row["reset_token_expires"]),
            verification_token=row["verification_token"],
            last_login_at=_from_db(row["last_login_at"]),
            last_login_ip=row["last_login_ip"],
            last_login_user_agent=row["last_login_user_agent"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )


class SQLiteSessionStore(_SQLiteStore):
    """
    Session Store on SQLite.

    Sessions are never deleted; revocation flips ``active`` to 0 and a
    revoked row is never reactivated.
    """

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id INTEGER NOT NULL,
        token TEXT UNIQUE NOT NULL,
        ip_address TEXT,
        user_agent TEXT,
        device TEXT NOT NULL DEFAULT 'web',
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
    """

    def insert(self, record: Session, cancel: Optional[CancelToken] = None) -> Session:
        with self._transaction(cancel, write=True) as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    id, user_id, token, ip_address, user_agent, device,
                    created_at, expires_at, active
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.token,
                    record.ip_address,
                    record.user_agent,
                    record.device,
                    _to_db(record.created_at),
                    _to_db(record.expires_at),
                    int(record.active),
                ),
            )
        return record

    def find_by_token(self, token: str, cancel: Optional[CancelToken] = None) -> Optional[Session]:
        with self._transaction(cancel) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE token = ?", (token,)).fetchone()
        return self._row_to_session(row) if row else None

    def find_by_id(self, session_id: str, cancel: Optional[CancelToken] = None) -> Optional[Session]:
        with self._transaction(cancel) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def list_active_for_user(
        self, user_id: int, now: datetime, cancel: Optional[CancelToken] = None
    ) -> list[Session]:
        with self._transaction(cancel) as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE user_id = ? AND active = 1 AND expires_at > ?
                ORDER BY created_at DESC
                """,
                (user_id, _to_db(now)),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def set_active(
        self,
        token: str,
        active: bool,
        user_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        self._reject_reactivation(active)
        query = "UPDATE sessions SET active = 0 WHERE token = ? AND active = 1"
        params: tuple[Any, ...] = (token,)
        if user_id is not None:
            query += " AND user_id = ?"
            params += (user_id,)

        with self._transaction(cancel, write=True) as conn:
            return conn.execute(query, params).rowcount

    def set_active_by_id(
        self,
        session_id: str,
        user_id: int,
        active: bool,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        self._reject_reactivation(active)
        with self._transaction(cancel, write=True) as conn:
            return conn.execute(
                "UPDATE sessions SET active = 0 WHERE id = ? AND user_id = ? AND active = 1",
                (session_id, user_id),
            ).rowcount

    def set_active_all_for_user(
        self,
        user_id: int,
        active: bool,
        except_token: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        self._reject_reactivation(active)
        query = "UPDATE sessions SET active = 0 WHERE user_id = ? AND active = 1"
        params: tuple[Any, ...] = (user_id,)
        if except_token is not None:
            query += " AND token != ?"
            params += (except_token,)

        with self._transaction(cancel, write=True) as conn:
            return conn.execute(query, params).rowcount

    @staticmethod
    def _reject_reactivation(active: bool) -> None:
        if active:
            raise ValueError("Revoked or expired sessions cannot be reactivated")

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        """Convert a database row to a Session object."""
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            token=row["token"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            device=row["device"] or DEFAULT_DEVICE,
            created_at=_from_db(row["created_at"]),
            expires_at=_from_db(row["expires_at"]),
            active=bool(row["active"]),
        )
