"""Event contract between the engine and a presentation layer.

The engine reports three kinds of events from its worker thread: audit
lines, progress snapshots and the terminal run status.  A presentation
layer implements ``RunListener`` or, when it owns its own update loop,
uses ``QueueListener`` and drains the queue from that loop.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from .models import AuditCategory, AuditEntry, ProgressSnapshot, RunStatus
from .progress import render_status

logger = logging.getLogger(__name__)


class RunListener(Protocol):
    """Receives engine events.  Implementations must not block."""

    def on_audit(self, entry: AuditEntry) -> None: ...

    def on_progress(self, snapshot: ProgressSnapshot) -> None: ...

    def on_status(self, status: RunStatus) -> None: ...


class NullListener:
    """Listener that ignores every event."""

    def on_audit(self, entry: AuditEntry) -> None:
        pass

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        pass

    def on_status(self, status: RunStatus) -> None:
        pass


class QueueListener:
    """Non-blocking handoff onto a bounded queue.

    Events are queued as ``(kind, payload)`` tuples where *kind* is
    ``"audit"``, ``"progress"`` or ``"status"``.  When the queue is full,
    progress snapshots are dropped (they are advisory) while audit and
    status events go to an overflow buffer that ``drain()`` returns after
    the queued events, so none of them is lost.

    Args:
        maxsize: Queue capacity.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self.queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize)
        self._overflow: list[tuple[str, Any]] = []
        self._lock = threading.Lock()
        self.dropped_progress = 0

    def _post(self, kind: str, payload: Any, droppable: bool) -> None:
        try:
            self.queue.put_nowait((kind, payload))
        except queue.Full:
            if droppable:
                self.dropped_progress += 1
                return
            with self._lock:
                self._overflow.append((kind, payload))

    def on_audit(self, entry: AuditEntry) -> None:
        self._post("audit", entry, droppable=False)

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        self._post("progress", snapshot, droppable=True)

    def on_status(self, status: RunStatus) -> None:
        self._post("status", status, droppable=False)

    def drain(self) -> list[tuple[str, Any]]:
        """Return every pending event without blocking."""
        events: list[tuple[str, Any]] = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                break
        with self._lock:
            events.extend(self._overflow)
            self._overflow.clear()
        return events


class LoggingListener:
    """Forwards audit lines and progress status lines to ``logging``.

    Used by the command line front end.  Status lines are logged at INFO,
    at most once every *status_interval* seconds.
    """

    def __init__(
        self,
        progress_logger: logging.Logger | None = None,
        status_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._log = progress_logger or logger
        self._status_interval = status_interval
        self._clock = clock
        self._last_status: float | None = None

    def on_audit(self, entry: AuditEntry) -> None:
        level = (
            logging.WARNING
            if entry.category in (AuditCategory.ERROR, AuditCategory.WARNING)
            else logging.INFO
        )
        self._log.log(level, "%s", entry.message)

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        now = self._clock()
        if (
            self._last_status is not None
            and now - self._last_status < self._status_interval
        ):
            return
        self._last_status = now
        self._log.info("%s", render_status(snapshot))

    def on_status(self, status: RunStatus) -> None:
        self._log.info("Run finished: %s", status.value)
