"""Tests for the audit trail sinks."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from finvault.security.audit import (
    AuditAction,
    AuditEvent,
    AuditSeverity,
    AuditSink,
    BackgroundAuditDispatcher,
    RecentAuditBuffer,
    TamperAwareAuditLog,
    token_prefix,
)


def make_event(action=AuditAction.LOGIN, success=True, **kwargs):
    severity = AuditSeverity.INFO if success else AuditSeverity.WARNING
    return AuditEvent(action=action, success=success, severity=severity, **kwargs)


class SlowSink:
    def __init__(self):
        self.events = []
        self.release = threading.Event()

    def record(self, event):
        self.release.wait(timeout=5)
        self.events.append(event)


class FlakySink:
    def __init__(self):
        self.events = []

    def record(self, event):
        if event.action == "logout":
            raise OSError("disk full")
        self.events.append(event)


class TestAuditEvent:

    def test_action_enum_is_stored_as_text(self):
        event = make_event(AuditAction.VERIFY_EMAIL)

        assert event.action == "verify_email"
        assert len(event.event_id) == 16

    def test_token_prefix(self):
        assert token_prefix("abcdefghijklmnop") == "abcdefghij..."
        assert token_prefix("") is None
        assert token_prefix(None) is None


class TestTamperAwareAuditLog:

    @pytest.fixture
    def log(self, tmp_path):
        return TamperAwareAuditLog(tmp_path / "audit" / "audit.jsonl")

    def test_satisfies_sink_protocol(self, log):
        assert isinstance(log, AuditSink)

    def test_chain_verifies(self, log):
        for action in (AuditAction.REGISTER, AuditAction.LOGIN, AuditAction.LOGOUT):
            log.record(make_event(action, user_id=1))

        assert log.event_count == 3
        assert log.verify_integrity() == (True, 3)

    def test_tampering_is_detected(self, log, tmp_path):
        log.record(make_event(AuditAction.LOGIN, success=False, user_id=1))
        log.record(make_event(AuditAction.LOGIN, user_id=1))

        path = tmp_path / "audit" / "audit.jsonl"
        lines = path.read_text().splitlines()
        first = json.loads(lines[0])
        first["success"] = True
        lines[0] = json.dumps(first)
        path.write_text("\n".join(lines) + "\n")

        assert log.verify_integrity() == (False, 0)

    def test_chain_resumes_after_reopen(self, log, tmp_path):
        log.record(make_event(AuditAction.REGISTER))

        reopened = TamperAwareAuditLog(tmp_path / "audit" / "audit.jsonl")
        reopened.record(make_event(AuditAction.LOGIN))

        assert reopened.event_count == 2
        assert reopened.verify_integrity() == (True, 2)

    def test_get_events_filters(self, log):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        log.record(make_event(AuditAction.LOGIN, success=False, user_id=1, timestamp=start))
        log.record(make_event(AuditAction.LOGIN, user_id=2, timestamp=start + timedelta(hours=1)))
        log.record(make_event(AuditAction.LOGOUT, user_id=2, timestamp=start + timedelta(hours=2)))

        assert len(log.get_events(action="login")) == 2
        assert len(log.get_events(severity=AuditSeverity.WARNING)) == 1
        assert [e["action"] for e in log.get_events(user_id=2)] == ["login", "logout"]
        assert len(log.get_events(since=start + timedelta(minutes=30))) == 2
        assert len(log.get_events(limit=1)) == 1


class TestRecentAuditBuffer:

    def test_keeps_most_recent(self):
        buffer = RecentAuditBuffer(maxlen=3)
        for n in range(5):
            buffer.record(make_event(user_id=n))

        assert len(buffer) == 3
        assert [e.user_id for e in buffer.events()] == [2, 3, 4]


class TestBackgroundAuditDispatcher:

    def test_record_does_not_block_on_slow_sink(self):
        sink = SlowSink()
        dispatcher = BackgroundAuditDispatcher(sink)

        dispatcher.record(make_event())
        assert sink.events == []

        sink.release.set()
        dispatcher.flush()
        assert len(sink.events) == 1
        dispatcher.close()

    def test_sink_errors_are_contained(self):
        sink = FlakySink()
        dispatcher = BackgroundAuditDispatcher(sink)

        dispatcher.record(make_event(AuditAction.LOGOUT))
        dispatcher.record(make_event(AuditAction.LOGIN))
        dispatcher.flush()

        assert [e.action for e in sink.events] == ["login"]
        dispatcher.close()

    def test_full_queue_drops_instead_of_blocking(self):
        sink = SlowSink()
        dispatcher = BackgroundAuditDispatcher(sink, max_queue=1)

        for _ in range(5):
            dispatcher.record(make_event())

        sink.release.set()
        dispatcher.flush()
        assert 1 <= len(sink.events) < 5
        dispatcher.close()
