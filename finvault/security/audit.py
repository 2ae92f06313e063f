"""
Tamper-Aware Audit System
=========================

Append-only audit events for every authentication outcome.

Sinks:
- TamperAwareAuditLog: JSON Lines file with chained hashes
- RecentAuditBuffer: bounded in-memory window of recent events
- BackgroundAuditDispatcher: queue + worker thread in front of any sink so
  that recording never blocks or fails the calling operation
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Final, List, Optional, Protocol, runtime_checkable


GENESIS_HASH: Final[str] = "genesis"
TOKEN_PREFIX_LENGTH: Final[int] = 10


class AuditSeverity(Enum):
    """Audit event severity levels."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AuditAction(str, Enum):
    """Auditable authentication actions."""
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"
    VALIDATE_SESSION = "validate_session"
    GET_PROFILE = "get_profile"
    LIST_SESSIONS = "list_sessions"
    REFRESH_TOKEN = "refresh_token"
    TERMINATE_SESSION = "terminate_session"
    CHANGE_PASSWORD = "change_password"
    DEACTIVATE_ACCOUNT = "deactivate_account"
    RESET_PASSWORD_REQUEST = "reset_password_request"
    RESET_PASSWORD_CONFIRM = "reset_password_confirm"
    VERIFY_EMAIL = "verify_email"


def token_prefix(token: Any) -> Optional[str]:
    """Short, non-replayable reference to a token for audit details."""
    if not isinstance(token, str) or not token:
        return None
    return token[:TOKEN_PREFIX_LENGTH] + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuditEvent:
    """An auditable authentication outcome."""
    action: str
    success: bool
    severity: AuditSeverity
    timestamp: datetime = field(default_factory=_utcnow)
    user_id: Optional[int] = None
    email: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    # Computed fields
    event_id: str = field(default="")
    previous_hash: str = field(default="")
    event_hash: str = field(default="")

    def __post_init__(self):
        if isinstance(self.action, AuditAction):
            self.action = self.action.value
        if not self.event_id:
            self.event_id = hashlib.sha256(
                f"{self.timestamp.isoformat()}{self.action}{os.urandom(8).hex()}".encode()
            ).hexdigest()[:16]

    def _hashable(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "action": self.action,
            "success": self.success,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "email": self.email,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }

    def compute_hash(self, previous_hash: str) -> str:
        """Compute event hash for chain integrity."""
        self.previous_hash = previous_hash
        self.event_hash = hashlib.sha256(
            json.dumps(self._hashable(), sort_keys=True, default=str).encode()
        ).hexdigest()
        return self.event_hash

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        data = self._hashable()
        data["event_hash"] = self.event_hash
        return data


@runtime_checkable
class AuditSink(Protocol):
    """Consumer of audit events."""

    def record(self, event: AuditEvent) -> None: ...


class TamperAwareAuditLog:
    """
    Append-only audit log with tamper detection.

    Features:
    - Chained hashes for integrity
    - Append-only (no deletion)
    - JSON Lines format
    - No passwords or full tokens (callers only pass prefixes)
    """

    def __init__(self, log_path: Path):
        self._log_path = Path(log_path)
        self._lock = threading.Lock()
        self._last_hash = GENESIS_HASH
        self._event_count = 0
        self._log = logging.getLogger("finvault.audit")

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._load_chain()

    @property
    def event_count(self) -> int:
        return self._event_count

    def _load_chain(self):
        """Resume the chain from the last event already on disk."""
        if not self._log_path.exists():
            return

        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        event = json.loads(line)
                        self._last_hash = event.get("event_hash", self._last_hash)
                        self._event_count += 1
        except (OSError, ValueError):
            self._log.error(f"Audit log {self._log_path.name} is unreadable; starting a new chain")
            self._last_hash = GENESIS_HASH
            self._event_count = 0

    def record(self, event: AuditEvent) -> None:
        """Append an event to the log."""
        with self._lock:
            event.compute_hash(self._last_hash)

            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())

            self._last_hash = event.event_hash
            self._event_count += 1

    def verify_integrity(self) -> tuple[bool, int]:
        """
        Verify log chain integrity.

        Returns:
            Tuple of (is_valid, number of events verified)
        """
        if not self._log_path.exists():
            return True, 0

        previous_hash = GENESIS_HASH
        count = 0

        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue

                    stored = json.loads(line)
                    if stored.get("previous_hash") != previous_hash:
                        return False, count

                    recomputed = hashlib.sha256(
                        json.dumps(
                            {k: v for k, v in stored.items() if k != "event_hash"},
                            sort_keys=True,
                            default=str,
                        ).encode()
                    ).hexdigest()
                    if recomputed != stored.get("event_hash"):
                        return False, count

                    previous_hash = stored["event_hash"]
                    count += 1

            return True, count

        except (OSError, ValueError, KeyError):
            return False, count

    def get_events(
        self,
        since: Optional[datetime] = None,
        action: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Get filtered events (read-only)."""
        events: List[Dict[str, Any]] = []

        if not self._log_path.exists():
            return events

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue

                event = json.loads(line)

                if since and datetime.fromisoformat(event["timestamp"]) < since:
                    continue
                if action and event["action"] != action:
                    continue
                if severity and event["severity"] != severity.value:
                    continue
                if user_id is not None and event["user_id"] != user_id:
                    continue

                events.append(event)

                if len(events) >= limit:
                    break

        return events


class RecentAuditBuffer:
    """Bounded in-memory window of the most recent audit events."""

    def __init__(self, maxlen: int = 1000) -> None:
        self._events: deque[AuditEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self, action: Optional[str] = None) -> List[AuditEvent]:
        with self._lock:
            snapshot = list(self._events)
        if action is None:
            return snapshot
        return [event for event in snapshot if event.action == action]

    def __len__(self) -> int:
        return len(self._events)


class BackgroundAuditDispatcher:
    """
    Fire-and-forget front for a slow sink.

    ``record`` only enqueues. A daemon worker forwards events to the sink
    and logs (never raises) sink failures. When the queue is full the
    event is dropped with a warning rather than blocking the caller.
    """

    _STOP: Final[object] = object()

    def __init__(self, sink: AuditSink, max_queue: int = 10000) -> None:
        self._sink = sink
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max_queue)
        self._log = logging.getLogger("finvault.audit")
        self._worker = threading.Thread(
            target=self._run,
            daemon=True,
            name="Audit-Dispatcher",
        )
        self._worker.start()

    def record(self, event: AuditEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self._log.warning(f"Audit queue full; dropped {event.action} event {event.event_id}")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._sink.record(item)
            except Exception:
                self._log.exception("Audit sink failed to record event")
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued event has been handed to the sink."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        """Drain the queue and stop the worker."""
        self._queue.put(self._STOP)
        self._worker.join(timeout=timeout)
