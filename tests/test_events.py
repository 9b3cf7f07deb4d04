"""Tests for the engine-to-presentation event contract."""

from __future__ import annotations

import logging

from synchive.sync.events import LoggingListener, NullListener, QueueListener
from synchive.sync.models import (
    AuditCategory,
    AuditEntry,
    ProgressSnapshot,
    RunStatus,
)


def _audit(message: str = "Copied a.txt") -> AuditEntry:
    return AuditEntry(category=AuditCategory.COPY, message=message)


class TestQueueListener:
    """Tests for QueueListener non-blocking handoff."""

    def test_events_in_order(self):
        listener = QueueListener()
        entry = _audit()
        snap = ProgressSnapshot(bytes_processed=1)
        listener.on_audit(entry)
        listener.on_progress(snap)
        listener.on_status(RunStatus.SUCCESS)
        assert listener.drain() == [
            ("audit", entry),
            ("progress", snap),
            ("status", RunStatus.SUCCESS),
        ]
        assert listener.drain() == []

    def test_progress_dropped_when_full(self):
        listener = QueueListener(maxsize=1)
        listener.on_progress(ProgressSnapshot(bytes_processed=1))
        listener.on_progress(ProgressSnapshot(bytes_processed=2))
        assert listener.dropped_progress == 1
        events = listener.drain()
        assert [p.bytes_processed for _, p in events] == [1]

    def test_audit_and_status_never_dropped(self):
        """Non-droppable events overflow instead of blocking or vanishing."""
        listener = QueueListener(maxsize=1)
        listener.on_progress(ProgressSnapshot())
        entries = [_audit(f"line {i}") for i in range(3)]
        for entry in entries:
            listener.on_audit(entry)
        listener.on_status(RunStatus.CANCELLED)

        kinds = [kind for kind, _ in listener.drain()]
        assert kinds == ["progress", "audit", "audit", "audit", "status"]
        assert listener.dropped_progress == 0


class TestNullListener:
    """Tests for NullListener."""

    def test_accepts_everything(self):
        listener = NullListener()
        listener.on_audit(_audit())
        listener.on_progress(ProgressSnapshot())
        listener.on_status(RunStatus.SUCCESS)


class TestLoggingListener:
    """Tests for LoggingListener."""

    def test_audit_logged_at_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="synchive.sync.events"):
            LoggingListener().on_audit(_audit("Copied b.txt"))
        assert caplog.records[-1].levelno == logging.INFO
        assert caplog.records[-1].getMessage() == "Copied b.txt"

    def test_error_logged_at_warning(self, caplog):
        entry = AuditEntry(
            category=AuditCategory.ERROR, message="IntegrityError: a: boom"
        )
        with caplog.at_level(logging.INFO, logger="synchive.sync.events"):
            LoggingListener().on_audit(entry)
        assert caplog.records[-1].levelno == logging.WARNING

    def test_status_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="synchive.sync.events"):
            LoggingListener().on_status(RunStatus.COMPLETED_WITH_ERRORS)
        assert "completed_with_errors" in caplog.text

    def test_progress_logged_as_status_line(self, caplog):
        snap = ProgressSnapshot(
            bytes_processed=1024,
            total_bytes=2048,
            elapsed_seconds=61,
            bytes_per_second=512,
            percent=50.0,
        )
        with caplog.at_level(logging.INFO, logger="synchive.sync.events"):
            LoggingListener().on_progress(snap)
        assert caplog.records[-1].levelno == logging.INFO
        assert caplog.records[-1].getMessage() == (
            "Read: 1.0 KiB | Read Speed: 512 B/s | "
            "Running Time: 00:01:01 | 50.0%"
        )

    def test_status_lines_rate_limited(self, caplog):
        now = [10.0]
        listener = LoggingListener(status_interval=1.0, clock=lambda: now[0])
        with caplog.at_level(logging.INFO, logger="synchive.sync.events"):
            listener.on_progress(ProgressSnapshot(bytes_processed=1))
            now[0] += 0.5
            listener.on_progress(ProgressSnapshot(bytes_processed=2))
            now[0] += 0.5
            listener.on_progress(ProgressSnapshot(bytes_processed=3))
        assert [r.getMessage()[:9] for r in caplog.records] == [
            "Read: 1 B",
            "Read: 3 B",
        ]
