"""
Database module - Store contracts and the SQLite reference stores.

Security Considerations:
- Counter, lock and single-use token writes are atomic conditional updates
- Store failures are logged here and surfaced without detail
"""

from finvault.db.base import CancelToken, SessionStore, UserStore
from finvault.db.sqlite import SQLiteSessionStore, SQLiteUserStore

__all__ = [
    "CancelToken",
    "SessionStore",
    "UserStore",
    "SQLiteSessionStore",
    "SQLiteUserStore",
]
