"""Progress accounting for a run.

Tracks cumulative bytes read by hashing and copying, the running time, a
read speed averaged over a short trailing window, and the percentage of
the byte total found by the initial size pass.  Snapshots are pushed to a
callback no more often than ``min_interval`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from .models import ProgressSnapshot

logger = logging.getLogger(__name__)

_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def format_bytes(count: float) -> str:
    """Human-readable byte count (``1.5 MiB``)."""
    value = float(count)
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} {_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """``HH:MM:SS`` for a duration in seconds."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def render_status(snap: ProgressSnapshot) -> str:
    """``Read: ... | Read Speed: ... | Running Time: ... | NN.N%``."""
    return (
        f"Read: {format_bytes(snap.bytes_processed)} | "
        f"Read Speed: {format_bytes(snap.bytes_per_second)}/s | "
        f"Running Time: {format_duration(snap.elapsed_seconds)} | "
        f"{snap.percent:.1f}%"
    )


class ProgressAccountant:
    """Thread-safe byte counter with rate-limited snapshot emission.

    Args:
        emit: Receives ``ProgressSnapshot`` objects.  Called outside the
            internal lock, from whichever thread reported the bytes.
        total_bytes: Initial byte total (see ``add_total`` and ``set_total``).
        window_seconds: Length of the trailing window used for speed.
        min_interval: Minimum seconds between two emissions.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        emit: Callable[[ProgressSnapshot], None] | None = None,
        total_bytes: int = 0,
        window_seconds: float = 2.0,
        min_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._emit = emit
        self._clock = clock
        self._window = window_seconds
        self._min_interval = min_interval
        self._lock = threading.Lock()
        self._total = total_bytes
        self._processed = 0
        self._current: str | None = None
        self._start = clock()
        self._last_emit: float | None = None
        self._samples: deque[tuple[float, int]] = deque([(self._start, 0)])

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def add_total(self, count: int) -> None:
        with self._lock:
            self._total += count

    def set_total(self, count: int) -> None:
        """Replace the byte total, e.g. to lower an upper-bound estimate."""
        with self._lock:
            self._total = count

    def set_current(self, relative_path: str | None) -> None:
        with self._lock:
            self._current = relative_path

    def add(self, count: int) -> None:
        """Record *count* more bytes read; may emit a snapshot."""
        with self._lock:
            now = self._clock()
            self._processed += count
            self._samples.append((now, self._processed))
            self._trim(now)
            due = (
                self._last_emit is None
                or now - self._last_emit >= self._min_interval
            )
            if due:
                self._last_emit = now
                snapshot = self._snapshot(now)
        if due and self._emit is not None:
            self._emit(snapshot)

    def flush(self) -> ProgressSnapshot:
        """Emit and return a snapshot regardless of the rate limit."""
        with self._lock:
            now = self._clock()
            self._last_emit = now
            snapshot = self._snapshot(now)
        if self._emit is not None:
            self._emit(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Figures
    # ------------------------------------------------------------------

    @property
    def bytes_processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot(self._clock())

    def status_line(self) -> str:
        return render_status(self.snapshot())

    def _trim(self, now: float) -> None:
        # Keep one sample at or before the window start as the baseline
        while len(self._samples) > 2 and self._samples[1][0] <= now - self._window:
            self._samples.popleft()

    def _snapshot(self, now: float) -> ProgressSnapshot:
        first_t, first_bytes = self._samples[0]
        last_t, last_bytes = self._samples[-1]
        span = last_t - first_t
        speed = (last_bytes - first_bytes) / span if span > 0 else 0.0
        if self._total > 0:
            percent = min(100.0, self._processed * 100.0 / self._total)
        else:
            percent = 0.0
        return ProgressSnapshot(
            bytes_processed=self._processed,
            total_bytes=self._total,
            elapsed_seconds=max(0.0, now - self._start),
            bytes_per_second=speed,
            percent=percent,
            current_path=self._current,
        )
