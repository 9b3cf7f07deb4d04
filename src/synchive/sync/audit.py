"""Append-only audit trail.

Entries are kept in memory during a run, mirrored to the run listener as
they are recorded, and appended to ``~auditTrail.txt`` at the destination
root when the trail is flushed.  The file is plain UTF-8 text, one line
per entry, and is never rewritten.  Characters that cannot be encoded
(names that are not valid UTF-8) are written as backslash escapes.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from synchive.errors import SynchiveError

from .events import NullListener, RunListener
from .models import AuditCategory, AuditEntry

logger = logging.getLogger(__name__)


class AuditTrail:
    """In-memory audit log with an append-only file behind it.

    Usage::

        trail = AuditTrail(dest_root / AUDIT_FILE_NAME, listener)
        trail.record(AuditCategory.COPY, "Copied a.txt", "a.txt")
        trail.flush()
    """

    def __init__(
        self, path: str | Path | None, listener: RunListener | None = None
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._listener = listener or NullListener()
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []
        self._flushed = 0

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def record(
        self,
        category: AuditCategory,
        message: str,
        relative_path: str | None = None,
    ) -> AuditEntry:
        """Append one entry and hand it to the listener."""
        entry = AuditEntry(
            category=category, message=message, relative_path=relative_path
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("Audit: %s %s", category.value, message)
        self._listener.on_audit(entry)
        return entry

    def error(
        self, relative_path: str, exc: SynchiveError | OSError
    ) -> AuditEntry:
        """Record a per-file failure as ``<ErrorType>: <path>: <detail>``."""
        detail = getattr(exc, "detail", None) or str(exc)
        return self.record(
            AuditCategory.ERROR,
            f"{type(exc).__name__}: {relative_path}: {detail}",
            relative_path,
        )

    def flush(self) -> int:
        """Append not-yet-written entries to the audit file.

        Returns:
            Number of lines written.
        """
        with self._lock:
            pending = self._entries[self._flushed :]
            self._flushed = len(self._entries)
        if self._path is None or not pending:
            return 0

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open(
            "a", encoding="utf-8", errors="backslashreplace"
        ) as f:
            for entry in pending:
                f.write(entry.render() + "\n")
        return len(pending)
